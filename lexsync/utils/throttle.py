"""Outbound request pacing.

Every deliberate delay in the sync pipeline (retry waits, the pause between
batches, the courtesy pause between per-AWB lookups) goes through a single
``Throttle`` instance instead of inline ``asyncio.sleep`` calls. This keeps the
upstream-facing request rate in one place and lets tests swap the sleep
function for a recorder so no test waits on a real timer.

Usage pattern:
    throttle = Throttle()
    await throttle.pause(2.0, reason="inter_batch")

Stats returned by ``snapshot()``:
    {
        'enabled': bool,
        'pauses': int,          # number of pauses actually slept
        'total_seconds': float, # cumulative requested delay
        'by_reason': {reason: count}
    }
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class ThrottleStats:
    pauses: int = 0
    total_seconds: float = 0.0
    by_reason: Dict[str, int] = field(default_factory=dict)


class Throttle:
    def __init__(self, sleep: SleepFn | None = None, *, enabled: bool = True):
        self._sleep: SleepFn = sleep or asyncio.sleep
        self.enabled = enabled
        self._stats = ThrottleStats()

    async def pause(self, seconds: float, reason: str = "default") -> None:
        if not self.enabled or seconds <= 0:
            return
        self._stats.pauses += 1
        self._stats.total_seconds += seconds
        self._stats.by_reason[reason] = self._stats.by_reason.get(reason, 0) + 1
        await self._sleep(seconds)

    def snapshot(self) -> dict:
        return {
            "enabled": self.enabled,
            "pauses": self._stats.pauses,
            "total_seconds": round(self._stats.total_seconds, 3),
            "by_reason": dict(self._stats.by_reason),
        }


__all__ = ["Throttle", "SleepFn"]
