"""Periodic draining of the persisted retry queue."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import List, Mapping, Optional

from .context import OracleContext
from .handlers import HANDLERS, Handler
from .models import DrainReport, FailedJob

LOGGER = logging.getLogger(__name__)


class RetryQueueManager:
    """Re-attempt queued jobs with exponential backoff and dead-lettering."""

    def __init__(self, ctx: OracleContext, *, handlers: Optional[Mapping[str, Handler]] = None) -> None:
        self._ctx = ctx
        self._handlers = dict(handlers or HANDLERS)
        self._task: Optional[asyncio.Task[None]] = None

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run_loop())

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    @property
    def running(self) -> bool:
        return bool(self._task and not self._task.done())

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ctx.config.retry_interval_seconds)
            try:
                await self.drain()
            except Exception:
                LOGGER.exception("Retry queue pass failed")

    async def drain(self) -> DrainReport:
        """Attempt every due job once and persist the rewritten queue."""

        ctx = self._ctx
        report = DrainReport()
        async with ctx.worker_lock:
            jobs = ctx.queue.load()
            if not jobs:
                ctx.metrics.queue_depth.set(0)
                return report
            LOGGER.info("Checking %d queued job(s)", len(jobs))
            remaining: List[FailedJob] = []
            touched = False
            for job in jobs:
                if ctx.clock() < job.next_attempt_at:
                    remaining.append(job)
                    continue
                touched = True
                report.attempted += 1
                error = await self._attempt(job)
                if error is None:
                    report.succeeded += 1
                    ctx.metrics.retry_attempts.labels(job.event_name, "succeeded").inc()
                    LOGGER.info("Retried %s from block %s successfully", job.event_name, job.block_number)
                    continue
                ctx.metrics.retry_attempts.labels(job.event_name, "failed").inc()
                job.retry_count += 1
                job.last_error = str(error)
                if job.retry_count >= ctx.config.max_retries:
                    report.dead_lettered += 1
                    await self._dead_letter(job, error)
                    continue
                job.next_attempt_at = ctx.clock() + ctx.config.base_retry_delay_seconds * (2 ** job.retry_count)
                report.rescheduled += 1
                LOGGER.warning(
                    "Retry %d/%d of %s from block %s failed: %s",
                    job.retry_count,
                    ctx.config.max_retries,
                    job.event_name,
                    job.block_number,
                    error,
                )
                remaining.append(job)
            if touched:
                ctx.queue.save(remaining)
            ctx.metrics.queue_depth.set(len(remaining))
        return report

    async def _attempt(self, job: FailedJob) -> Optional[Exception]:
        handler = self._handlers.get(job.event_name)
        if handler is None:
            return LookupError(f"No handler registered for {job.event_name}")
        try:
            event = await self._ctx.chain.reconstruct_event(job.event_name, job.transaction_hash)
            if event is None:
                return LookupError(f"{job.event_name} not found in receipt of {job.transaction_hash}")
            await handler(self._ctx, event.args, event)
        except Exception as exc:
            return exc
        return None

    async def _dead_letter(self, job: FailedJob, error: Exception) -> None:
        LOGGER.error(
            "Giving up on %s from block %s after %d attempts", job.event_name, job.block_number, job.retry_count
        )
        self._ctx.metrics.dead_letters.labels(job.event_name).inc()
        await self._ctx.notifier.notify(
            "Job permanently failed",
            f"{job.event_name} in block {job.block_number} (tx {job.transaction_hash}) was dropped after "
            f"{job.retry_count} failed attempts.\n\nLast error: {error}",
            metadata={
                "event": job.event_name,
                "blockNumber": job.block_number,
                "transactionHash": job.transaction_hash,
                "retryCount": job.retry_count,
            },
        )


__all__ = ["RetryQueueManager"]
