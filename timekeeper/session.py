# timekeeper/session.py
from __future__ import annotations

"""
Race session controller ("Timekeeper").

Owns the race/lap state for one racer at a time and drives the countdown,
lap stopwatch and reset counter from discrete operator actions:

    AWAITING_RACER --select_racer--> PAUSED --start--> RACING
    RACING <--pause/start--> PAUSED
    any --request_end--> ENDED --confirm_end--> AWAITING_RACER
                               --cancel_end---> (previous state)

Every public method takes the controller lock, so a caller never observes a
half-applied mutation. Rejected actions raise InvalidTransition and leave the
session untouched. The countdown is evaluated *after* each action has been
applied, so a lap captured in the same turn the clock runs out is recorded
before the expiry pauses the stopwatch.
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from .clock import Clock, CountdownTimer, LapStopwatch
from .counter import ResetCounter
from .errors import InvalidTransition, LapNotFound
from .models import Event, Lap, RaceResult, SessionState

log = logging.getLogger("timekeeper.session")

UTC_MS = lambda: int(time.time() * 1000)


def compute_fastest_lap(laps: Iterable[Lap]) -> Optional[Lap]:
    """Fastest valid lap, first one wins a tie; None when no lap is valid."""
    best: Optional[Lap] = None
    for lap in laps:
        if lap.is_valid and (best is None or lap.time < best.time):
            best = lap
    return best


class Timekeeper:
    def __init__(self, event: Optional[Event] = None, *,
                 clock: Clock = time.perf_counter,
                 trace_size: int = 500,
                 on_submit: Optional[Callable[[RaceResult], None]] = None):
        self.event: Event = event or Event()
        self.on_submit = on_submit
        self._trace_size = max(1, int(trace_size))

        self.stopwatch = LapStopwatch(clock=clock)
        self.countdown = CountdownTimer(self.event.race_time_in_sec * 1000,
                                        on_expire=self._on_race_expired, clock=clock)
        self.resets = ResetCounter(limit=self.event.number_of_resets)

        self._lock = threading.RLock()
        self._events_ring: List[dict] = []
        self.last_result: Optional[RaceResult] = None
        self.reset()

    # ---------- lifecycle ----------
    def reset(self) -> None:
        """Fresh AWAITING_RACER session. Does not touch last_result."""
        with self._lock:
            self.state: SessionState = SessionState.AWAITING_RACER
            self.racer_name: Optional[str] = None
            self.laps: List[Lap] = []
            self.fastest_lap: Optional[Lap] = None
            self.race_over: bool = False
            self.timer_armed_for_reset: bool = False

            self.racer_selection_open: bool = True
            self.end_confirmation_open: bool = False
            self._state_before_end: Optional[SessionState] = None

            self.stopwatch.pause()
            self.stopwatch.reset()
            self.resets.reset()
            self.countdown.reset(self.event.race_time_in_sec * 1000)

    @property
    def session_active(self) -> bool:
        return self.state in (SessionState.RACING, SessionState.PAUSED)

    @property
    def current_lap_resets(self) -> int:
        return self.resets.value

    def select_event(self, event: Event) -> dict:
        with self._lock:
            self._require("select_event", SessionState.AWAITING_RACER)
            self.event = event
            self.resets.limit = event.number_of_resets
            self.countdown.reset(event.race_time_in_sec * 1000)
            self._emit("event_selected", event_name=event.event_name,
                       race_time_in_sec=event.race_time_in_sec)
            return self.snapshot()

    def select_racer(self, racer_name: str) -> dict:
        name = str(racer_name or "").strip()
        if not name:
            raise ValueError("racer name must not be empty")
        with self._lock:
            self._require("select_racer", SessionState.AWAITING_RACER)
            self.racer_name = name
            self.laps = []
            self.fastest_lap = None
            self.race_over = False
            self.resets.reset()
            self.stopwatch.pause()
            self.stopwatch.reset()
            self.countdown.reset(self.event.race_time_in_sec * 1000)
            self.timer_armed_for_reset = False
            self.racer_selection_open = False
            # clock starts on the operator's explicit start
            self.state = SessionState.PAUSED
            log.info("[RACER] selected %s for %s", name, self.event.event_name)
            self._emit("racer_selected", racer=name)
            return self.snapshot()

    def dismiss_racer_selection(self) -> dict:
        with self._lock:
            self.racer_selection_open = False
            return self.snapshot()

    # ---------- clock control ----------
    def start(self) -> dict:
        with self._lock:
            if self.racer_name is None:
                raise InvalidTransition("start", self.state.value, "no racer selected")
            if self.state == SessionState.RACING:
                return self.snapshot()
            self._require("start", SessionState.PAUSED)
            self.stopwatch.start()
            self.countdown.start()
            self.state = SessionState.RACING
            self._emit("start")
            self._settle()
            return self.snapshot()

    def pause(self) -> dict:
        with self._lock:
            if self.state == SessionState.PAUSED:
                return self.snapshot()
            self._require("pause", SessionState.RACING)
            self.stopwatch.pause()
            self.countdown.pause()
            if self.state == SessionState.RACING:
                self.state = SessionState.PAUSED
            self._emit("pause")
            return self.snapshot()

    def toggle_race(self) -> dict:
        """Single start/pause button. Without a racer it reopens racer selection."""
        with self._lock:
            if self.racer_name is None:
                self.stopwatch.pause()
                self.racer_selection_open = True
                return self.snapshot()
            if self.state == SessionState.RACING:
                return self.pause()
            return self.start()

    # ---------- laps ----------
    def capture_lap(self, is_valid: bool = True) -> Lap:
        with self._lock:
            self._require("capture_lap", SessionState.RACING)
            lap = Lap(
                id=len(self.laps),
                time=self.stopwatch.elapsed_ms,
                resets=self.resets.value,
                crashes=0,
                is_valid=bool(is_valid),
            )
            self.laps.append(lap)
            self.stopwatch.reset(0)
            self.resets.reset()
            self._recompute_fastest()
            log.info("[LAP] %s lap %d %dms resets=%d %s", self.racer_name, lap.id, lap.time,
                     lap.resets, "valid" if lap.is_valid else "DNF")
            self._emit("lap", lap_id=lap.id, time=lap.time, resets=lap.resets, is_valid=lap.is_valid)
            self._settle()
            return lap

    def toggle_lap_validity(self, lap_id: int) -> Lap:
        with self._lock:
            try:
                idx = int(lap_id)
            except (TypeError, ValueError):
                raise LapNotFound(lap_id, self.state.value)
            if idx < 0 or idx >= len(self.laps):
                raise LapNotFound(idx, self.state.value)
            lap = self.laps[idx]
            lap.is_valid = not lap.is_valid
            self._recompute_fastest()
            self._emit("lap_validity", lap_id=lap.id, is_valid=lap.is_valid)
            self._settle()
            return lap

    def undo_last_capture(self) -> Optional[Lap]:
        """Drop the last lap and fold its time back into the running lap."""
        with self._lock:
            if not self.laps:
                return None
            lap = self.laps.pop()
            self.stopwatch.reset(lap.time + self.stopwatch.elapsed_ms)
            self._recompute_fastest()
            log.info("[UNDO] removed lap %d (%dms)", lap.id, lap.time)
            self._emit("undo", lap_id=lap.id, time=lap.time)
            self._settle()
            return lap

    # ---------- resets ----------
    def increment_resets(self) -> int:
        with self._lock:
            self._require("increment_resets", SessionState.RACING)
            value = self.resets.increment()
            self._settle()
            return value

    def decrement_resets(self) -> int:
        with self._lock:
            self._require("decrement_resets", SessionState.RACING)
            value = self.resets.decrement()
            self._settle()
            return value

    # ---------- ending ----------
    def request_end(self) -> dict:
        with self._lock:
            if self.state != SessionState.ENDED:
                self._state_before_end = self.state
                self.state = SessionState.ENDED
            self.end_confirmation_open = True
            return self.snapshot()

    def cancel_end(self) -> dict:
        with self._lock:
            self._require("cancel_end", SessionState.ENDED)
            self.state = self._state_before_end or SessionState.AWAITING_RACER
            self._state_before_end = None
            self.end_confirmation_open = False
            self._settle()
            return self.snapshot()

    def confirm_end(self, submit: bool) -> Optional[RaceResult]:
        """Submit or abandon the session, then tear it down for the next racer."""
        with self._lock:
            self._require("confirm_end", SessionState.ENDED)
            result: Optional[RaceResult] = None
            if self.racer_name is not None:
                laps = [Lap(lap.id, lap.time, lap.resets, lap.crashes, lap.is_valid) for lap in self.laps]
                result = RaceResult(
                    racer_name=self.racer_name,
                    event=self.event,
                    laps=laps,
                    fastest_lap=compute_fastest_lap(laps),
                    outcome="submitted" if submit else "abandoned",
                    ended_at_ms=UTC_MS(),
                )
                if submit and self.on_submit is not None:
                    # raises before teardown, so a failed submit leaves the session intact
                    self.on_submit(result)
                self.last_result = result
                log.info("[END] %s race for %s (%d laps)", result.outcome, result.racer_name,
                         len(result.laps))
            self._emit("end", outcome="submitted" if submit else "abandoned")
            self.reset()
            self.timer_armed_for_reset = True
            return result

    # ---------- snapshot ----------
    def snapshot(self) -> dict:
        with self._lock:
            self._settle()
            return {
                "state": self.state.value,
                "racer_name": self.racer_name,
                "session_active": self.session_active,
                "race_over": self.race_over,
                "timer_armed_for_reset": self.timer_armed_for_reset,
                "racer_selection_open": self.racer_selection_open,
                "end_confirmation_open": self.end_confirmation_open,
                "event": self.event.as_snapshot(),
                "countdown": self.countdown.as_snapshot(),
                "current_lap": self.stopwatch.as_snapshot(),
                "resets": self.resets.as_snapshot(),
                "laps": [lap.as_snapshot() for lap in self.laps],
                "fastest_lap": self.fastest_lap.as_snapshot() if self.fastest_lap else None,
                "last_update_utc": UTC_MS(),
            }

    def events(self) -> List[dict]:
        with self._lock:
            return list(self._events_ring)

    # ---------- internal helpers ----------
    def _require(self, action: str, *allowed: SessionState) -> None:
        if self.state not in allowed:
            raise InvalidTransition(action, self.state.value)

    def _settle(self) -> None:
        # evaluated after the action so its effects land first
        self.countdown.check()

    def _recompute_fastest(self) -> None:
        self.fastest_lap = compute_fastest_lap(self.laps)

    def _on_race_expired(self) -> None:
        with self._lock:
            self.stopwatch.pause()
            self.race_over = True
            if self.state == SessionState.RACING:
                self.state = SessionState.PAUSED
            elif self.state == SessionState.ENDED and self._state_before_end == SessionState.RACING:
                self._state_before_end = SessionState.PAUSED
            log.info("[COUNTDOWN] race over for %s", self.racer_name)
            self._emit("race_over")

    def _emit(self, event: str, **payload) -> None:
        ev: Dict[str, object] = {"ts_utc": UTC_MS(), "event": event, **payload}
        self._events_ring.append(ev)
        if len(self._events_ring) > self._trace_size:
            self._events_ring = self._events_ring[-self._trace_size:]
