"""Segmenter / Reassembler: fan out oversized payloads, join results in order.

A payload longer than ``max_chunk`` is split with ``split_text``; each chunk
becomes a sub-task ``<task_id>#<index>`` run through the orchestrator with
bounded parallelism. Results land in a buffer slot per chunk and are joined
only when every slot succeeded. Text chunks are rejoined with ``join_text``,
which puts back the space lost at Latin-script sentence seams.

Partial failure:
  STRICT (default)  any failed chunk fails the whole unit
  BEST_EFFORT       text only: PARTIAL status with the first successful chunk
                    and the first chunk error attached; audio stays STRICT

In-flight chunk calls are not cancelled when a sibling fails.
"""

from __future__ import annotations

import asyncio
import logging

from synthgate.gateway.orchestrator import InvocationOrchestrator
from synthgate.gateway.retry import RetryPolicy
from synthgate.gateway.text import join_text, split_text
from synthgate.gateway.types import (
    GenerationKind,
    GenerationResult,
    ReassemblyPolicy,
    ResultStatus,
    Task,
)

logger = logging.getLogger(__name__)


class Segmenter:
    def __init__(
        self,
        orchestrator: InvocationOrchestrator,
        *,
        max_chunk: int = 200,
        min_chunk: int = 50,
        parallelism: int = 1,
        policy: ReassemblyPolicy = ReassemblyPolicy.STRICT,
    ):
        self.orchestrator = orchestrator
        self.max_chunk = max_chunk
        self.min_chunk = min_chunk
        self.parallelism = max(1, parallelism)
        self.policy = policy

    def needs_split(self, task: Task) -> bool:
        return len(task.payload.content) > self.max_chunk

    def segment(self, task: Task) -> list[Task]:
        parts = split_text(task.payload.content, self.max_chunk, self.min_chunk)
        return [
            Task(
                payload=task.payload.with_content(part),
                task_id=f"{task.task_id}#{index}",
                priority=task.priority,
            )
            for index, part in enumerate(parts)
        ]

    async def run(
        self,
        task: Task,
        retry_policy: RetryPolicy | None = None,
        reassembly: ReassemblyPolicy | None = None,
    ) -> GenerationResult:
        if not self.needs_split(task):
            return await self.orchestrator.invoke(task, retry_policy)

        chunks = self.segment(task)
        logger.info("Task %s split into %d chunks", task.task_id, len(chunks))

        buffer: list[GenerationResult | None] = [None] * len(chunks)
        semaphore = asyncio.Semaphore(self.parallelism)

        async def run_chunk(index: int, chunk: Task) -> None:
            async with semaphore:
                buffer[index] = await self.orchestrator.invoke(chunk, retry_policy)

        await asyncio.gather(*(run_chunk(i, chunk) for i, chunk in enumerate(chunks)))
        return self.reassemble(task, buffer, reassembly or self.policy)

    def reassemble(
        self,
        task: Task,
        buffer: list[GenerationResult | None],
        policy: ReassemblyPolicy = ReassemblyPolicy.STRICT,
    ) -> GenerationResult:
        """Join chunk results in order, or fail the unit per ``policy``."""
        results = [r for r in buffer if r is not None]
        attempts = sum(r.attempts for r in results)
        latency_ms = max((r.latency_ms for r in results), default=0)
        failures = [r for r in results if r.status == ResultStatus.FAILED]

        if len(results) < len(buffer) and not failures:
            raise RuntimeError(f"Reassembly of {task.task_id} started with unfilled slots")

        produced = [r for r in results if r.status == ResultStatus.SUCCESS]

        if not failures:
            if not produced:
                return GenerationResult(task_id=task.task_id, status=ResultStatus.SKIPPED, attempts=attempts)
            data = _join([r.data for r in produced], task.payload.kind)
            return GenerationResult(
                task_id=task.task_id,
                data=data,
                attempts=attempts,
                from_cache=all(r.from_cache for r in produced),
                credential_id=produced[-1].credential_id,
                latency_ms=latency_ms,
            )

        first_error = failures[0].error
        if policy == ReassemblyPolicy.BEST_EFFORT and task.payload.kind == GenerationKind.TEXT and produced:
            logger.warning(
                "Task %s: %d of %d chunks failed, returning first successful chunk",
                task.task_id,
                len(failures),
                len(buffer),
            )
            return GenerationResult(
                task_id=task.task_id,
                status=ResultStatus.PARTIAL,
                data=produced[0].data,
                error=first_error,
                attempts=attempts,
                credential_id=produced[0].credential_id,
                latency_ms=latency_ms,
            )

        logger.warning("Task %s: %d of %d chunks failed", task.task_id, len(failures), len(buffer))
        return GenerationResult(
            task_id=task.task_id,
            status=ResultStatus.FAILED,
            error=first_error,
            attempts=attempts,
            credential_id=failures[0].credential_id,
            latency_ms=latency_ms,
        )


def _join(parts: list, kind: GenerationKind):
    if kind == GenerationKind.AUDIO:
        return b"".join(parts)
    return join_text(parts)
