"""Shared pytest fixtures: a hand-driven clock for the timer classes."""
import pytest


class FakeClock:
    """Stands in for time.perf_counter; advance() moves time in milliseconds."""

    def __init__(self, start_s: float = 1000.0):
        self.now = start_s

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
