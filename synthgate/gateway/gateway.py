"""Generation Gateway: service object wiring all gateway components.

Main entry point for callers:
  1. Accepts Tasks (single or batch)
  2. Splits oversized payloads via the Segmenter
  3. Checks the Response Cache
  4. Paces calls through the Concurrency Throttle
  5. Selects and rotates credentials from the Credential Pool
  6. Dispatches via Provider Adapters with classified retries

Usage:
    async with GenerationGateway(settings) as gateway:
        result = await gateway.submit(Task(payload=GenerationPayload("Hello")))
        audio = result.data

        results = await gateway.submit_batch(tasks, on_progress=print)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable

from synthgate.core.config import Settings, settings as default_settings
from synthgate.core.encryption import SecretCipher
from synthgate.db.engine import create_engine
from synthgate.gateway.cache import ResponseCache
from synthgate.gateway.credential_pool import CredentialPool, Listener
from synthgate.gateway.orchestrator import AdapterFactory, InvocationOrchestrator
from synthgate.gateway.providers import get_adapter
from synthgate.gateway.queue import TaskQueue
from synthgate.gateway.segmenter import Segmenter
from synthgate.gateway.stores import SqlCacheStore, SqlCredentialStore
from synthgate.gateway.throttle import ConcurrencyThrottle
from synthgate.gateway.types import (
    AddCredentialResult,
    GenerationPayload,
    GenerationResult,
    PoolStatus,
    ReassemblyPolicy,
    ResultData,
    ResultStatus,
    RetryMode,
    Task,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class StatusChannel:
    """Stream of pool status snapshots with latest-value semantics.

    A slow consumer skips intermediate snapshots but always sees the newest.
    """

    def __init__(self, pool: CredentialPool):
        self._latest: PoolStatus | None = None
        self._version = 0
        self._changed = asyncio.Event()
        self._unsubscribe = pool.subscribe(self._publish)

    def _publish(self, status: PoolStatus) -> None:
        self._latest = status
        self._version += 1
        self._changed.set()

    @property
    def latest(self) -> PoolStatus | None:
        return self._latest

    async def stream(self) -> AsyncIterator[PoolStatus]:
        seen = 0
        while True:
            if self._version != seen:
                seen = self._version
                yield self._latest
                continue
            self._changed.clear()
            await self._changed.wait()

    def close(self) -> None:
        self._unsubscribe()


class GenerationGateway:
    """Explicit service object with an init/shutdown lifecycle.

    Integrates:
      - CredentialPool: key rotation, cooldowns, usage accounting
      - ResponseCache: memory LRU + SQL persistent tier
      - ConcurrencyThrottle: in-flight bound and adaptive pacing
      - InvocationOrchestrator: classify / rotate / back off
      - Segmenter: chunked fan-out and ordered reassembly
    """

    def __init__(
        self,
        config: Settings | None = None,
        *,
        adapter_factory: AdapterFactory | None = None,
        credential_store=None,
        cache_store=None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            config: Settings to build components from (defaults to env settings)
            adapter_factory: secret -> provider adapter; defaults to the configured provider
            credential_store / cache_store: override the SQL stores built from DATABASE_URL
            clock / sleep: injectable for tests; one clock drives every component
        """
        self.settings = config or default_settings
        cfg = self.settings

        self._engine = None
        if (credential_store is None or cache_store is None) and cfg.database_url:
            self._engine = create_engine(cfg.database_url)
            if credential_store is None:
                cipher = SecretCipher(cfg.fernet_key) if cfg.fernet_key else None
                credential_store = SqlCredentialStore(self._engine, cipher=cipher)
            if cache_store is None and cfg.cache_enabled:
                cache_store = SqlCacheStore(self._engine)
        self._stores = [s for s in (credential_store, cache_store) if s is not None]

        self.pool = CredentialPool(
            cfg.seed_credentials,
            default_cooldown=cfg.default_cooldown_seconds,
            usage_threshold=cfg.usage_threshold_per_key,
            prefix=cfg.credential_prefix,
            min_length=cfg.credential_min_length,
            store=credential_store,
            clock=clock or time.time,
        )
        self.cache = (
            ResponseCache(
                cache_store,
                max_entries=cfg.memory_cache_size,
                persistent_max_entries=cfg.persistent_cache_size,
                max_age=cfg.cache_max_age_seconds,
                compaction_interval=cfg.cache_compaction_interval_seconds,
                clock=clock or time.time,
            )
            if cfg.cache_enabled
            else None
        )
        self.throttle = ConcurrencyThrottle(
            max_in_flight=cfg.max_in_flight,
            base_delay=cfg.adaptive_delay_base,
            min_delay=cfg.adaptive_delay_min,
            max_delay=cfg.adaptive_delay_max,
            step_down=cfg.adaptive_step_down,
            step_up=cfg.adaptive_step_up,
            success_streak=cfg.adaptive_success_streak,
            clock=clock or time.monotonic,
            sleep=sleep,
        )
        self.orchestrator = InvocationOrchestrator(
            self.pool,
            self.throttle,
            adapter_factory or self._default_adapter_factory,
            cache=self.cache,
            policy=cfg.gateway_policy(),
            clock=clock or time.time,
            sleep=sleep,
        )
        self.segmenter = Segmenter(
            self.orchestrator,
            max_chunk=cfg.chunk_max_size,
            min_chunk=cfg.chunk_min_size,
            parallelism=cfg.max_in_flight,
            policy=ReassemblyPolicy(cfg.reassembly_policy),
        )
        self._started = False

    def _default_adapter_factory(self, secret: str):
        cfg = self.settings
        return get_adapter(
            cfg.provider,
            secret,
            timeout=cfg.provider_timeout_seconds,
            speech_model=cfg.speech_model,
            text_model=cfg.text_model,
            default_voice=cfg.default_voice,
        )

    # --- Lifecycle ---

    async def start(self) -> None:
        """Create tables, restore credentials and usage, warm the cache."""
        if self._started:
            return
        for store in self._stores:
            if not hasattr(store, "initialize"):
                continue
            try:
                await store.initialize()
            except Exception:
                logger.warning("Store %s unavailable, continuing without it", type(store).__name__, exc_info=True)
                self._detach(store)

        await self.pool.initialize()
        if self.cache is not None:
            await self.cache.start()
        self._started = True
        logger.info(
            "Gateway started: provider=%s credentials=%d max_in_flight=%d mode=%s",
            self.settings.provider,
            len(self.pool),
            self.throttle.max_in_flight,
            self.settings.retry_mode,
        )

    async def shutdown(self) -> None:
        """Flush pending cache writes, stop compaction, dispose the engine."""
        if self.cache is not None:
            await self.cache.close()
        for store in self._stores:
            if hasattr(store, "close"):
                await store.close()
        if self._engine is not None:
            await self._engine.dispose()
        self._started = False
        logger.info("Gateway stopped")

    async def __aenter__(self) -> GenerationGateway:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()

    def _detach(self, store) -> None:
        if self.pool.store is store:
            self.pool.store = None
        if self.cache is not None and self.cache.store is store:
            self.cache.store = None

    # --- Submission ---

    async def submit(
        self,
        task: Task | GenerationPayload,
        mode: RetryMode | str | None = None,
        reassembly: ReassemblyPolicy | None = None,
    ) -> GenerationResult:
        """Run one task to a terminal result. Failures are returned, not raised."""
        if isinstance(task, GenerationPayload):
            task = Task(payload=task)
        policy = self.settings.gateway_policy(mode) if mode else None
        return await self.segmenter.run(task, retry_policy=policy, reassembly=reassembly)

    async def submit_batch(
        self,
        tasks: list[Task],
        on_progress: ProgressCallback | None = None,
        mode: RetryMode | str | None = None,
    ) -> dict[str, ResultData | None]:
        """Run a batch; map each task id to its data, or None if it produced none."""
        results = await self.submit_batch_results(tasks, on_progress=on_progress, mode=mode)
        return {
            task_id: result.data if result.status in (ResultStatus.SUCCESS, ResultStatus.PARTIAL) else None
            for task_id, result in results.items()
        }

    async def submit_batch_results(
        self,
        tasks: list[Task],
        on_progress: ProgressCallback | None = None,
        mode: RetryMode | str | None = None,
    ) -> dict[str, GenerationResult]:
        """Run a batch and keep the full result per task id.

        Memory-cached tasks resolve first and report progress with id "cached".
        The rest run in priority order with ``max_in_flight`` workers.
        """
        ids = [task.task_id for task in tasks]
        if len(set(ids)) != len(ids):
            raise ValueError("Task ids must be unique within a batch")

        total = len(tasks)
        completed = 0
        results: dict[str, GenerationResult] = {}

        def report(current_id: str) -> None:
            if on_progress is None:
                return
            try:
                on_progress(completed, total, current_id)
            except Exception:
                logger.exception("Batch progress callback failed")

        pending: list[Task] = []
        for task in tasks:
            entry = await self.cache.get(task.payload, memory_only=True) if self.cache is not None else None
            if entry is None:
                pending.append(task)
                continue
            results[task.task_id] = GenerationResult(task_id=task.task_id, data=entry.result, from_cache=True)
            completed += 1
            report("cached")

        queue = TaskQueue()
        await queue.enqueue_batch(pending)

        async def worker() -> None:
            nonlocal completed
            while (task := await queue.dequeue()) is not None:
                results[task.task_id] = await self.submit(task, mode=mode)
                completed += 1
                report(task.task_id)

        workers = min(self.throttle.max_in_flight, len(pending))
        if workers:
            await asyncio.gather(*(worker() for _ in range(workers)))

        logger.info(
            "Batch done: %d tasks, %d from cache, %d failed",
            total,
            total - len(pending),
            sum(1 for r in results.values() if r.status == ResultStatus.FAILED),
        )
        return results

    # --- Pool management ---

    def status(self) -> PoolStatus:
        return self.pool.status()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.pool.subscribe(listener)

    def status_channel(self) -> StatusChannel:
        return StatusChannel(self.pool)

    async def add_credential(self, secret: str) -> bool:
        return await self.pool.add_credential(secret) == AddCredentialResult.SUCCESS

    async def remove_credential(self, credential_id: str) -> bool:
        slot = self.pool.get(credential_id)
        removed = await self.pool.remove_credential(credential_id)
        if removed and slot is not None:
            self.orchestrator.discard_adapter(slot.key_hash)
        return removed

    async def reset_usage(self) -> None:
        await self.pool.reset_usage()

    def list_credentials(self) -> list[dict]:
        return self.pool.list_credentials()

    def get_stats(self) -> dict:
        return {
            "pool": self.pool.status().to_dict(),
            "throttle": self.throttle.get_stats(),
            "cache": self.cache.get_stats() if self.cache is not None else None,
            "retry_mode": self.settings.retry_mode,
            "provider": self.settings.provider,
        }
