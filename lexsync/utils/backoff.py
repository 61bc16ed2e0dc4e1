"""Delay helpers for the fixed-delay and exponential retry loops."""
from __future__ import annotations

from typing import Optional

from lexsync.config import RETRY_POLICY


def compute_backoff_seconds(attempt: int, *, base: Optional[float] = None, factor: Optional[float] = None, max_seconds: Optional[float] = None) -> float:
    """Compute exponential backoff delay (defaults from the write-back policy)."""
    if attempt < 1:
        attempt = 1
    policy = RETRY_POLICY["write_back"]
    base = float(base if base is not None else policy["base_seconds"])
    factor = float(factor if factor is not None else policy["factor"])
    max_seconds = float(max_seconds if max_seconds is not None else policy["max_seconds"])

    delay = base * (factor ** (attempt - 1))
    delay = min(delay, max_seconds)
    return max(delay, 0.0)


def fixed_delay(delay_seconds: float):
    """Return a delay function that waits the same time after every attempt."""
    def _delay(attempt: int) -> float:
        return max(float(delay_seconds), 0.0)
    return _delay


def exponential_delay(*, base: Optional[float] = None, factor: Optional[float] = None, max_seconds: Optional[float] = None):
    def _delay(attempt: int) -> float:
        return compute_backoff_seconds(attempt, base=base, factor=factor, max_seconds=max_seconds)
    return _delay


__all__ = ["compute_backoff_seconds", "fixed_delay", "exponential_delay"]
