# timekeeper/models.py
# -----------------------------------------------------------------------------
# Plain data structs shared by the session controller, the upload poller and
# the HTTP layer. Everything here is in-memory only; nothing is persisted.
# -----------------------------------------------------------------------------
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SessionState(str, Enum):
    AWAITING_RACER = "awaiting_racer"
    RACING = "racing"
    PAUSED = "paused"
    ENDED = "ended"


class UploadStatus(str, Enum):
    IDLE = "Idle"
    IN_PROGRESS = "InProgress"
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


# ----------------------------- Laps -----------------------------
@dataclass
class Lap:
    id: int
    time: int                 # milliseconds
    resets: int = 0
    crashes: int = 0          # reserved; never populated
    is_valid: bool = True

    def as_snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "time": self.time,
            "time_str": format_lap_time(self.time),
            "resets": self.resets,
            "crashes": self.crashes,
            "is_valid": self.is_valid,
        }


def split_ms(ms: int) -> Dict[str, int]:
    """Split a millisecond count into {minutes, seconds, milliseconds}."""
    ms = max(0, int(ms))
    return {
        "minutes": ms // 60000,
        "seconds": (ms // 1000) % 60,
        "milliseconds": ms % 1000,
    }


def format_lap_time(ms: int) -> str:
    s = split_ms(ms)
    return f"{s['minutes']:02d}:{s['seconds']:02d}.{s['milliseconds']:03d}"


# ----------------------------- Events -----------------------------
@dataclass
class Event:
    event_name: str = "Practice"
    race_time_in_sec: int = 180
    number_of_resets: int = 0
    event_id: Optional[str] = None

    @classmethod
    def from_remote(cls, row: Dict[str, Any]) -> "Event":
        """Build from a remote row (camelCase keys) or a config block (snake_case)."""
        row = row or {}
        raw_time = row.get("raceTimeInSec", row.get("race_time_in_sec", 180))
        raw_resets = row.get("numberOfResets", row.get("number_of_resets", 0))
        try:
            race_time = int(raw_time)
        except (TypeError, ValueError):
            raise ValueError(f"invalid race time: {raw_time!r}")
        try:
            resets = int(raw_resets)
        except (TypeError, ValueError):
            raise ValueError(f"invalid number of resets: {raw_resets!r}")
        if race_time <= 0:
            raise ValueError("race time must be positive")
        eid = row.get("eventId") or row.get("event_id")
        return cls(
            event_name=str(row.get("eventName") or row.get("event_name") or "Practice"),
            race_time_in_sec=race_time,
            number_of_resets=max(0, resets),
            event_id=str(eid) if eid else None,
        )

    def as_snapshot(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_name": self.event_name,
            "race_time_in_sec": self.race_time_in_sec,
            "number_of_resets": self.number_of_resets,
        }


# ----------------------------- Results -----------------------------
@dataclass
class RaceResult:
    racer_name: str
    event: Event
    laps: List[Lap]
    fastest_lap: Optional[Lap]
    outcome: str              # "submitted" | "abandoned"
    ended_at_ms: int

    def as_snapshot(self) -> Dict[str, Any]:
        return {
            "racer_name": self.racer_name,
            "event": self.event.as_snapshot(),
            "laps": [lap.as_snapshot() for lap in self.laps],
            "fastest_lap": self.fastest_lap.as_snapshot() if self.fastest_lap else None,
            "outcome": self.outcome,
            "ended_at_ms": self.ended_at_ms,
        }


# ----------------------------- Uploads -----------------------------
@dataclass
class UploadTask:
    car_id: str
    model_key: str
    command_id: Optional[str] = None
    status: str = UploadStatus.IDLE.value
    poll_count: int = 0        # loop ticks only; max_polls applies to this
    refresh_count: int = 0
    consecutive_errors: int = 0
    last_error: Optional[str] = None
    history: List[str] = field(default_factory=list)

    @property
    def terminal(self) -> bool:
        return self.status not in (UploadStatus.IDLE.value, UploadStatus.IN_PROGRESS.value)

    def as_snapshot(self) -> Dict[str, Any]:
        return {
            "car_id": self.car_id,
            "model_key": self.model_key,
            "command_id": self.command_id,
            "status": self.status,
            "terminal": self.terminal,
            "poll_count": self.poll_count,
            "refresh_count": self.refresh_count,
            "last_error": self.last_error,
        }
