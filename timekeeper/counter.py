# timekeeper/counter.py
from __future__ import annotations

from typing import Dict, Optional


class ResetCounter:
    """Car resets during the current lap. Never negative; limit is display-only."""
    __slots__ = ("value", "limit")

    def __init__(self, limit: Optional[int] = None):
        self.value: int = 0
        self.limit: Optional[int] = limit

    def increment(self) -> int:
        self.value += 1
        return self.value

    def decrement(self) -> int:
        # underflow clamps, it is not an error
        self.value = max(0, self.value - 1)
        return self.value

    def reset(self) -> None:
        self.value = 0

    @property
    def over_limit(self) -> bool:
        return self.limit is not None and self.value > self.limit

    def display(self) -> str:
        return f"{self.value}/{self.limit}" if self.limit is not None else str(self.value)

    def as_snapshot(self) -> Dict[str, object]:
        return {
            "value": self.value,
            "limit": self.limit,
            "display": self.display(),
            "over_limit": self.over_limit,
        }
