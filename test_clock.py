"""
Countdown timer, lap stopwatch and reset counter.

Tests verify:
1. Countdown fires on_expire exactly once at zero, however often it is polled
2. Pause freezes remaining time; start/pause cycles do not drift
3. reset() re-arms (and is idempotent while stopped); an expired timer stays
   at zero until re-armed
4. The event-loop deadline callback fires on its own, and never after a pause
5. Stopwatch start/pause/reset(to_ms) and the {minutes, seconds, ms} split
6. Reset counter clamps at zero
"""

import asyncio

from timekeeper.clock import CountdownTimer, Generation, LapStopwatch
from timekeeper.counter import ResetCounter


# ----------------------------- Countdown -----------------------------
def test_countdown_fires_exactly_once(clock):
    fired = []
    cd = CountdownTimer(3000, on_expire=lambda: fired.append(1), clock=clock)
    cd.start()

    clock.advance(2999)
    assert cd.check() is False
    assert cd.remaining_ms == 1

    clock.advance(1)
    assert cd.check() is True
    # repeated render/poll cycles at (and past) the boundary
    for _ in range(5):
        assert cd.check() is False
        clock.advance(250)
    assert fired == [1], f"expected a single expiry, got {len(fired)}"
    assert cd.expired and not cd.running
    assert cd.remaining_ms == 0
    assert cd.display() == "00:00"


def test_countdown_pause_keeps_remaining_time(clock):
    cd = CountdownTimer(3000, clock=clock)
    cd.start()
    clock.advance(1000)
    cd.pause()
    clock.advance(60_000)
    assert cd.remaining_ms == 2000
    assert not cd.expired

    cd.start()
    clock.advance(1999)
    assert cd.check() is False
    clock.advance(1)
    assert cd.check() is True


def test_countdown_does_not_drift_over_many_cycles(clock):
    cd = CountdownTimer(180_000, clock=clock)
    for _ in range(200):
        cd.start()
        clock.advance(7)
        cd.pause()
        clock.advance(13)       # paused time must not count
    assert cd.remaining_ms == 180_000 - 200 * 7


def test_countdown_reset_is_idempotent_and_rearms(clock):
    fired = []
    cd = CountdownTimer(1000, on_expire=lambda: fired.append(1), clock=clock)
    cd.reset()
    cd.reset()
    assert cd.remaining_ms == 1000 and not cd.running and not cd.expired

    cd.start()
    clock.advance(1000)
    cd.check()
    assert fired == [1]

    # expired timer ignores start() until re-armed
    cd.start()
    assert not cd.running
    clock.advance(5000)
    assert cd.check() is False

    cd.reset(2000)
    assert cd.remaining_ms == 2000 and not cd.expired
    cd.start()
    clock.advance(2000)
    assert cd.check() is True
    assert fired == [1, 1]


def test_countdown_display_rounds_up_to_whole_seconds(clock):
    cd = CountdownTimer(62_500, clock=clock)
    assert cd.display() == "01:03"
    cd.start()
    clock.advance(62_000)
    assert cd.display() == "00:01"


def test_countdown_deadline_callback_fires_on_the_loop():
    fired = []

    async def main():
        cd = CountdownTimer(30, on_expire=lambda: fired.append(1))
        cd.start()
        await asyncio.sleep(0.2)
        assert cd.expired

    asyncio.run(main())
    assert fired == [1]


def test_countdown_no_callback_after_pause_or_reset():
    fired = []

    async def main():
        paused = CountdownTimer(30, on_expire=lambda: fired.append("paused"))
        paused.start()
        paused.pause()

        rearmed = CountdownTimer(30, on_expire=lambda: fired.append("reset"))
        rearmed.start()
        rearmed.reset()

        await asyncio.sleep(0.15)
        assert not paused.expired and not rearmed.expired

    asyncio.run(main())
    assert fired == []


def test_generation_token():
    gen = Generation()
    token = gen.value
    assert gen.is_current(token)
    gen.bump()
    assert not gen.is_current(token)


# ----------------------------- Stopwatch -----------------------------
def test_stopwatch_start_pause_resume(clock):
    sw = LapStopwatch(clock=clock)
    assert sw.elapsed_ms == 0 and not sw.running

    sw.start()
    clock.advance(1234)
    assert sw.elapsed_ms == 1234

    sw.pause()
    clock.advance(10_000)
    assert sw.elapsed_ms == 1234

    sw.start()
    clock.advance(66)
    assert sw.elapsed_ms == 1300


def test_stopwatch_reset_to_value_keeps_running_state(clock):
    sw = LapStopwatch(clock=clock)
    sw.start()
    clock.advance(500)
    sw.reset(4000)
    assert sw.running
    clock.advance(250)
    assert sw.elapsed_ms == 4250

    sw.pause()
    sw.reset()
    assert sw.elapsed_ms == 0 and not sw.running


def test_stopwatch_split(clock):
    sw = LapStopwatch(clock=clock)
    sw.reset(2 * 60_000 + 5_000 + 42)
    assert sw.split() == {"minutes": 2, "seconds": 5, "milliseconds": 42}


def test_stopwatch_separates_laps_within_one_second(clock):
    sw = LapStopwatch(clock=clock)
    sw.start()
    clock.advance(10_120)
    first = sw.elapsed_ms
    sw.reset(0)
    clock.advance(10_480)
    assert first == 10_120 and sw.elapsed_ms == 10_480


# ----------------------------- Reset counter -----------------------------
def test_reset_counter_never_negative():
    rc = ResetCounter(limit=3)
    assert rc.decrement() == 0
    rc.increment()
    rc.increment()
    assert rc.decrement() == 1
    assert rc.decrement() == 0
    assert rc.decrement() == 0
    assert rc.value == 0


def test_reset_counter_display_and_limit():
    rc = ResetCounter(limit=2)
    for _ in range(3):
        rc.increment()
    assert rc.display() == "3/2"
    assert rc.over_limit
    rc.reset()
    assert rc.value == 0 and not rc.over_limit
    assert ResetCounter().display() == "0"
