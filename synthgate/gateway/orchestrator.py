"""Invocation Orchestrator: one logical call from cache check to result.

Per call:
  CacheCheck -> ThrottleWait -> CredentialSelect -> Calling -> Success | Classify

Classified failures drive the retry loop:
  RATE_LIMITED     cool the credential down, rotate; short fixed wait if another
                   credential is usable, otherwise exponential backoff honoring
                   the provider's retry hint. Budget depends on the retry mode.
  UNAUTHORIZED     surfaced immediately
  QUOTA_EXCEEDED   surfaced immediately
  NETWORK/SERVER   exponential backoff with jitter, bounded attempts
  UNKNOWN          a small bounded number of retries

The loop is iterative; attempt counters live in local state. Terminal failures
are returned inside the GenerationResult, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from synthgate.core.metrics import PROVIDER_CALLS, RETRY_WAIT
from synthgate.gateway.cache import ResponseCache
from synthgate.gateway.credential_pool import CredentialPool
from synthgate.gateway.errors import ErrorClass, GatewayError, classify_error
from synthgate.gateway.providers import BaseProviderAdapter
from synthgate.gateway.retry import RetryPolicy, rate_limit_delay, rotation_delay, transient_delay
from synthgate.gateway.text import is_speakable
from synthgate.gateway.throttle import ConcurrencyThrottle
from synthgate.gateway.types import (
    CredentialSlot,
    GenerationKind,
    GenerationResult,
    ResultStatus,
    Task,
)

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str], BaseProviderAdapter]


class InvocationOrchestrator:
    def __init__(
        self,
        pool: CredentialPool,
        throttle: ConcurrencyThrottle,
        adapter_factory: AdapterFactory,
        cache: ResponseCache | None = None,
        policy: RetryPolicy | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pool = pool
        self.throttle = throttle
        self.cache = cache
        self.policy = policy or RetryPolicy()
        self._adapter_factory = adapter_factory
        self._adapters: dict[str, BaseProviderAdapter] = {}  # by credential hash
        self._clock = clock
        self._sleep = sleep

    async def invoke(self, task: Task, policy: RetryPolicy | None = None) -> GenerationResult:
        """Run ``task`` to a terminal result."""
        policy = policy or self.policy
        payload = task.payload
        start = time.monotonic()

        if payload.kind == GenerationKind.AUDIO and not is_speakable(payload.content):
            logger.debug("Task %s has nothing speakable, skipping", task.task_id)
            return GenerationResult(task_id=task.task_id, status=ResultStatus.SKIPPED)

        if self.cache is not None:
            entry = await self.cache.get(payload)
            if entry is not None:
                return GenerationResult(
                    task_id=task.task_id,
                    data=entry.result,
                    from_cache=True,
                    latency_ms=_elapsed_ms(start),
                )

        calls = 0
        rate_limited = 0  # within the current persistent cycle
        cycles = 0
        transient = 0
        unknown = 0
        slot: CredentialSlot | None = None

        while True:
            await self.throttle.acquire()
            slot = await self.pool.select_usable()

            if slot is None:
                self.throttle.release(None)
                error = GatewayError(ErrorClass.NO_CREDENTIAL, "credential pool is empty")
                return self._failed(task, error, calls, "", start)

            now = self._clock()
            if slot.is_cooling(now):
                # Every credential is cooling; wait for the earliest one
                self.throttle.release(None)
                error = GatewayError(
                    ErrorClass.RATE_LIMITED,
                    "all credentials are cooling down",
                    retry_after=slot.cooldown_until - now,
                )
            else:
                calls += 1
                try:
                    result = await self._adapter(slot).generate(payload)
                except asyncio.CancelledError:
                    self.throttle.release(None)
                    raise
                except Exception as exc:
                    self.throttle.release(False)
                    error = classify_error(exc)
                    PROVIDER_CALLS.labels(kind=payload.kind.value, outcome=error.error_class.value).inc()
                else:
                    self.throttle.release(True)
                    PROVIDER_CALLS.labels(kind=payload.kind.value, outcome="success").inc()
                    await self.pool.record_success(slot.slot_id)
                    if self.cache is not None:
                        await self.cache.put(payload, result)
                    return GenerationResult(
                        task_id=task.task_id,
                        data=result,
                        attempts=calls,
                        credential_id=slot.slot_id,
                        latency_ms=_elapsed_ms(start),
                    )

                if error.error_class == ErrorClass.RATE_LIMITED:
                    await self.pool.record_rate_limit(slot.slot_id, error.retry_after)

            # --- Decide: wait and retry, or surface ---

            if error.error_class == ErrorClass.RATE_LIMITED:
                rate_limited += 1
                if rate_limited > policy.max_attempts:
                    if not policy.resets_budget or cycles + 1 >= policy.max_cycles:
                        return self._failed(task, error, calls, slot.slot_id, start)
                    cycles += 1
                    rate_limited = 0
                    wait = policy.exhausted_wait
                    logger.warning(
                        "Task %s: rate limit budget exhausted, pausing %.0fs (cycle %d/%d)",
                        task.task_id,
                        wait,
                        cycles,
                        policy.max_cycles,
                    )
                elif self.pool.has_usable(exclude=slot.slot_id):
                    wait = rotation_delay(policy, rate_limited)
                else:
                    wait = rate_limit_delay(policy, rate_limited, self._cooldown_remaining(error))

            elif error.error_class in (ErrorClass.NETWORK_ERROR, ErrorClass.SERVER_ERROR):
                transient += 1
                if transient > policy.max_attempts:
                    return self._failed(task, error, calls, slot.slot_id, start)
                wait = transient_delay(policy, transient)

            elif error.error_class == ErrorClass.UNKNOWN:
                unknown += 1
                if unknown > policy.unknown_max_attempts:
                    return self._failed(task, error, calls, slot.slot_id, start)
                wait = transient_delay(policy, unknown)

            else:
                # UNAUTHORIZED, QUOTA_EXCEEDED: not retried
                logger.error(
                    "Task %s: %s on credential %s, not retrying",
                    task.task_id,
                    error.error_class.value,
                    slot.slot_id,
                    extra={"task_id": task.task_id, "credential_id": slot.slot_id},
                )
                return self._failed(task, error, calls, slot.slot_id, start)

            logger.warning(
                "Task %s: %s on credential %s, retrying in %.2fs",
                task.task_id,
                error.error_class.value,
                slot.slot_id,
                wait,
                extra={"task_id": task.task_id, "credential_id": slot.slot_id},
            )
            RETRY_WAIT.labels(error_class=error.error_class.value).observe(wait)
            await self._sleep(wait)

    def _cooldown_remaining(self, error: GatewayError) -> float | None:
        """Provider hint, or time until the earliest credential frees up."""
        if error.retry_after:
            return error.retry_after
        expiry = self.pool.status().earliest_cooldown_expiry
        if expiry is None:
            return None
        return max(0.0, expiry - self._clock())

    def discard_adapter(self, key_hash: str) -> None:
        """Drop the cached adapter of a credential that left the pool."""
        self._adapters.pop(key_hash, None)

    def _adapter(self, slot: CredentialSlot) -> BaseProviderAdapter:
        adapter = self._adapters.get(slot.key_hash)
        if adapter is None:
            adapter = self._adapter_factory(slot.secret)
            self._adapters[slot.key_hash] = adapter
        return adapter

    def _failed(
        self,
        task: Task,
        error: GatewayError,
        calls: int,
        credential_id: str,
        start: float,
    ) -> GenerationResult:
        logger.warning("Task %s failed after %d calls: %s", task.task_id, calls, error)
        return GenerationResult(
            task_id=task.task_id,
            status=ResultStatus.FAILED,
            error=error,
            attempts=calls,
            credential_id=credential_id,
            latency_ms=_elapsed_ms(start),
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
