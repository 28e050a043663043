from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }


class RateLimiter:
    """Sliding-window counter per key. One instance lives on the app for the process lifetime."""

    def __init__(self, *, limit: int, window_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def _sweep(self, cutoff: float) -> None:
        stale = [key for key, q in self._hits.items() if not q or q[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        cutoff = now - self.window_seconds
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(cutoff)
            self._last_sweep = now

        q = self._hits.get(key, deque())
        while q and q[0] <= cutoff:
            q.popleft()

        if len(q) >= self.limit:
            return RateLimitResult(
                allowed=False,
                limit=self.limit,
                remaining=0,
                reset_at=(q[0] if q else now) + self.window_seconds,
            )

        q.append(now)
        self._hits[key] = q
        return RateLimitResult(
            allowed=True,
            limit=self.limit,
            remaining=max(self.limit - len(q), 0),
            reset_at=q[0] + self.window_seconds,
        )

    @property
    def tracked_keys(self) -> int:
        return len(self._hits)

    def reset(self, key: str) -> None:
        self._hits.pop(key, None)

    def clear(self) -> None:
        self._hits.clear()
