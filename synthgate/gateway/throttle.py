"""Concurrency Throttle: bounded in-flight calls with adaptive pacing.

Two limits apply at acquisition time:
  - no more than ``max_in_flight`` acquired-but-unreleased slots
  - no more than ``max_in_flight`` call starts inside one adaptive window

The adaptive window (the inter-call delay) self-tunes from outcomes: every
``success_streak`` consecutive successes shrink it by ``step_down`` down to
``min_delay``; any failure grows it by ``step_up`` up to ``max_delay`` and
resets the streak.

All acquirers are serialized through one asyncio.Lock so the rolling window
bookkeeping never races. ``release`` never takes the lock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

from synthgate.core.metrics import ADAPTIVE_DELAY

logger = logging.getLogger(__name__)


class ConcurrencyThrottle:
    """Pure pacing primitive shared by every call path.

    Usage:
        throttle = ConcurrencyThrottle(max_in_flight=2)

        await throttle.acquire()
        try:
            result = await call_provider()
        except Exception:
            throttle.release(success=False)
            raise
        throttle.release(success=True)
    """

    def __init__(
        self,
        max_in_flight: int = 1,
        base_delay: float = 1.0,
        min_delay: float = 0.4,
        max_delay: float = 2.0,
        step_down: float = 0.05,
        step_up: float = 0.2,
        success_streak: int = 3,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be at least 1, got {max_in_flight}")
        self.max_in_flight = max_in_flight
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.step_down = step_down
        self.step_up = step_up
        self.success_streak = success_streak
        self._clock = clock
        self._sleep = sleep

        self._delay = min(max(base_delay, min_delay), max_delay)
        self._consecutive_successes = 0
        self._consecutive_failures = 0
        self._active = 0
        self._window: deque[float] = deque()  # clock() of recent call starts
        self._gate = asyncio.Lock()
        self._slot_freed = asyncio.Event()
        ADAPTIVE_DELAY.set(self._delay)

    @property
    def adaptive_delay(self) -> float:
        return self._delay

    @property
    def active(self) -> int:
        return self._active

    def _prune(self, now: float) -> None:
        cutoff = now - self._delay
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    async def acquire(self) -> None:
        """Suspend until a slot is free inside the current adaptive window, then reserve it."""
        async with self._gate:
            while True:
                if self._active >= self.max_in_flight:
                    self._slot_freed.clear()
                    await self._slot_freed.wait()
                    continue

                now = self._clock()
                self._prune(now)
                if len(self._window) >= self.max_in_flight:
                    wait = self._window[0] + self._delay - now
                    if wait > 0:
                        await self._sleep(wait)
                    continue

                self._window.append(now)
                self._active += 1
                return

    def release(self, success: bool | None = None) -> None:
        """Free a slot. ``None`` frees it without recording an outcome."""
        self._active = max(0, self._active - 1)
        if success is True:
            self._record_success()
        elif success is False:
            self._record_failure()
        self._slot_freed.set()

    def _record_success(self) -> None:
        self._consecutive_successes += 1
        self._consecutive_failures = 0
        if self._consecutive_successes >= self.success_streak:
            self._delay = max(self.min_delay, round(self._delay - self.step_down, 6))
            self._consecutive_successes = 0
            ADAPTIVE_DELAY.set(self._delay)
            logger.debug("Adaptive delay decreased to %.3fs", self._delay)

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        self._consecutive_successes = 0
        self._delay = min(self.max_delay, round(self._delay + self.step_up, 6))
        ADAPTIVE_DELAY.set(self._delay)
        logger.debug("Adaptive delay increased to %.3fs", self._delay)

    def get_stats(self) -> dict:
        now = self._clock()
        self._prune(now)
        return {
            "max_in_flight": self.max_in_flight,
            "active": self._active,
            "recent_calls": len(self._window),
            "adaptive_delay": self._delay,
            "consecutive_successes": self._consecutive_successes,
            "consecutive_failures": self._consecutive_failures,
        }
