"""Wrapping 31-bit tick counter measured in hundredths of a second."""

from __future__ import annotations

import time
from dataclasses import dataclass

TICK_MASK = 0x7FFFFFFF


@dataclass(frozen=True)
class Tick:
    """A point in time, in 10 ms units, wrapping at 31 bits."""

    value: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", self.value & TICK_MASK)

    @classmethod
    def now(cls) -> Tick:
        """Return the current tick derived from the system clock."""
        millis = time.time_ns() // 1_000_000
        return cls((millis // 10) & 0xFFFFFFFF)

    def diff(self, other: Tick) -> int:
        """Signed distance from ``other`` to ``self``, accounting for wrap-around."""
        delta = ((self.value - other.value) << 1) & 0xFFFFFFFF
        if delta >= 0x80000000:
            delta -= 0x100000000
        return delta >> 1

    def gt(self, other: Tick) -> bool:
        """True if ``self`` is strictly later than ``other``."""
        return self.diff(other) > 0

    def gte(self, other: Tick) -> bool:
        """True if ``self`` is at or after ``other``."""
        return self.diff(other) >= 0