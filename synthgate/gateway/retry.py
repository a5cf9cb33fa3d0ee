"""Retry budgets and backoff arithmetic.

Backoff strategy for transient failures:
  delay = min(base * multiplier^attempt + jitter, max_delay)
  jitter = random(0, base * 0.5)

Rate limits use the same exponential curve without jitter and compete with
the provider's retry hint: whichever is larger wins.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from synthgate.gateway.types import RetryMode


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay parameters for one operating mode."""

    mode: RetryMode = RetryMode.AUTO
    max_attempts: int = 3
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    rotation_delay: float = 0.5  # another credential is usable right away
    unknown_max_attempts: int = 2
    cap_retry_hint: bool = False  # clamp the provider hint to max_delay as well
    exhausted_wait: float = 60.0  # persistent mode: pause before resetting the budget
    max_cycles: int = 3  # persistent mode: how many budget resets before giving up

    @property
    def resets_budget(self) -> bool:
        return self.mode == RetryMode.PERSISTENT


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    multiplier: float = 2.0,
    jitter: bool = True,
) -> float:
    """Calculate exponential backoff, optionally with jitter.

    Formula: min(base * multiplier^attempt + jitter, max_delay)
    Jitter: random(0, base * 0.5)
    """
    exponential = base_delay * (multiplier**attempt)
    extra = random.uniform(0, base_delay * 0.5) if jitter else 0.0
    return min(exponential + extra, max_delay)


def rotation_delay(policy: RetryPolicy, attempt: int) -> float:
    """Short pause before retrying on a freshly rotated credential.

    ``attempt`` is 1-based: 0.5s, 1.0s, 1.5s with the default step.
    """
    return policy.rotation_delay * max(attempt, 1)


def rate_limit_delay(policy: RetryPolicy, attempt: int, retry_hint: float | None) -> float:
    """Wait when every credential is cooling down.

    ``attempt`` is 1-based. The computed backoff is capped at ``max_delay``;
    the provider hint wins when it is longer.
    """
    backoff = calculate_backoff(
        attempt - 1,
        base_delay=policy.base_delay,
        max_delay=policy.max_delay,
        multiplier=policy.multiplier,
        jitter=False,
    )
    delay = max(retry_hint or 0.0, backoff)
    if policy.cap_retry_hint:
        delay = min(delay, policy.max_delay)
    return delay


def transient_delay(policy: RetryPolicy, attempt: int) -> float:
    """Backoff for network/server/unknown failures (``attempt`` is 1-based)."""
    return calculate_backoff(
        attempt - 1,
        base_delay=policy.base_delay,
        max_delay=policy.max_delay,
        multiplier=policy.multiplier,
    )
