# timekeeper/errors.py
from __future__ import annotations


class TimekeeperError(Exception):
    """Base for every error raised by the timekeeper core."""


class InvalidTransition(TimekeeperError):
    """Operator action requested while the session is in the wrong state."""

    def __init__(self, action: str, state: str, detail: str = ""):
        self.action = action
        self.state = state
        msg = f"'{action}' not allowed in state '{state}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class LapNotFound(InvalidTransition):
    def __init__(self, lap_id: int, state: str):
        self.lap_id = lap_id
        super().__init__("toggle_lap_validity", state, f"no lap with id {lap_id}")


class UploadInitiationError(TimekeeperError):
    """Remote submit failed or returned no command id. No poll loop is started."""


class StatusQueryError(TimekeeperError):
    """A single status query failed (transport or remote error)."""


class RemoteApiError(TimekeeperError):
    """Generic failure talking to the remote query/mutation API."""
