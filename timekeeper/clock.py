# timekeeper/clock.py
# -----------------------------------------------------------------------------
# Race countdown + lap stopwatch.
#
# Both clocks measure against a monotonic source (time.perf_counter by default)
# instead of accumulating ticks, so repeated start/pause cycles never drift.
# The clock source is injectable so tests can drive time by hand.
# -----------------------------------------------------------------------------
from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable, Dict, Optional

from .models import split_ms

log = logging.getLogger("timekeeper.clock")

Clock = Callable[[], float]


class Generation:
    """
    Cancellation token for scheduled callbacks.

    Every cancel/restart bumps the value; a callback captures the value when it
    is scheduled and must check `is_current()` before touching any state.
    """
    __slots__ = ("_value",)

    def __init__(self) -> None:
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def bump(self) -> int:
        self._value += 1
        return self._value

    def is_current(self, value: int) -> bool:
        return value == self._value


# ----------------------------- Countdown -----------------------------
class CountdownTimer:
    def __init__(self, duration_ms: int, on_expire: Optional[Callable[[], None]] = None,
                 clock: Clock = time.perf_counter):
        self._clock = clock
        self.on_expire = on_expire
        self._gen = Generation()
        self._handle: Optional[asyncio.TimerHandle] = None

        self.duration_ms: int = max(0, int(duration_ms))
        self._remaining_ms: int = self.duration_ms  # frozen value while not running
        self._deadline: Optional[float] = None       # clock() value at zero
        self.running: bool = False
        self.expired: bool = False

    # ---------- lifecycle ----------
    def start(self, duration_ms: Optional[int] = None) -> None:
        if self.running:
            return
        if duration_ms is not None:
            self.reset(duration_ms)
        if self.expired:
            # stays at zero until re-armed
            return
        self._deadline = self._clock() + self._remaining_ms / 1000.0
        self.running = True
        self._gen.bump()
        self._schedule()

    def pause(self) -> None:
        if not self.running:
            return
        if self.check():
            return
        self._remaining_ms = self.remaining_ms
        self._deadline = None
        self.running = False
        self._cancel_scheduled()

    def reset(self, duration_ms: Optional[int] = None) -> None:
        """Re-arm without starting. Safe to call repeatedly while stopped."""
        if duration_ms is not None:
            self.duration_ms = max(0, int(duration_ms))
        self._cancel_scheduled()
        self.running = False
        self.expired = False
        self._deadline = None
        self._remaining_ms = self.duration_ms

    # ---------- reads ----------
    @property
    def remaining_ms(self) -> int:
        if self.running and self._deadline is not None:
            return max(0, int(round((self._deadline - self._clock()) * 1000)))
        return self._remaining_ms

    def display(self) -> str:
        """Whole seconds, rounded up so 00:00 only shows once expired."""
        secs = int(math.ceil(self.remaining_ms / 1000.0))
        return f"{secs // 60:02d}:{secs % 60:02d}"

    def check(self) -> bool:
        """
        Evaluate the deadline. Fires on_expire (once) when remaining time hit
        zero; returns True only on the call that fired.
        """
        if not self.running or self.expired:
            return False
        if self.remaining_ms > 0:
            return False
        self._cancel_scheduled()
        self.running = False
        self.expired = True
        self._deadline = None
        self._remaining_ms = 0
        log.info("[COUNTDOWN] expired")
        if self.on_expire is not None:
            self.on_expire()
        return True

    # ---------- scheduling ----------
    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop (sync callers / tests): expiry is picked up by check()
            return
        gen = self._gen.value
        delay = max(0.0, self.remaining_ms / 1000.0)
        self._handle = loop.call_later(delay, self._on_deadline, gen)

    def _on_deadline(self, gen: int) -> None:
        if not self._gen.is_current(gen):
            return
        self._handle = None
        try:
            if not self.check() and self.running:
                # woke a hair early; try again at the new deadline
                self._schedule()
        except Exception:
            log.exception("[COUNTDOWN] expiry callback failed")

    def _cancel_scheduled(self) -> None:
        self._gen.bump()
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def as_snapshot(self) -> Dict[str, object]:
        return {
            "duration_ms": self.duration_ms,
            "remaining_ms": self.remaining_ms,
            "display": self.display(),
            "running": self.running,
            "expired": self.expired,
        }


# ----------------------------- Stopwatch -----------------------------
class LapStopwatch:
    def __init__(self, clock: Clock = time.perf_counter):
        self._clock = clock
        self._accum_ms: int = 0
        self._started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._started_at is not None

    @property
    def elapsed_ms(self) -> int:
        if self._started_at is None:
            return self._accum_ms
        delta_ms = int(round((self._clock() - self._started_at) * 1000))
        return self._accum_ms + max(0, delta_ms)

    def start(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()

    def pause(self) -> None:
        if self._started_at is None:
            return
        self._accum_ms = self.elapsed_ms
        self._started_at = None

    def reset(self, to_ms: int = 0) -> None:
        """Set the accumulated value; a running stopwatch keeps running from it."""
        self._accum_ms = max(0, int(to_ms))
        if self._started_at is not None:
            self._started_at = self._clock()

    def split(self) -> Dict[str, int]:
        return split_ms(self.elapsed_ms)

    def as_snapshot(self) -> Dict[str, object]:
        return {"elapsed_ms": self.elapsed_ms, "split": self.split(), "running": self.running}
