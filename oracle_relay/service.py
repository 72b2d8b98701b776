"""Process lifecycle: reconcile, drain, catch up, then listen."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Dict, Optional

from .context import OracleContext
from .identity import IdentityReconciler
from .ingestion import EventIngestor
from .reliability import ReliabilityWrapper
from .retry import RetryQueueManager

LOGGER = logging.getLogger(__name__)


class OracleService:
    """Own the relay's background work for one process."""

    def __init__(self, ctx: OracleContext) -> None:
        self._ctx = ctx
        self.identity = IdentityReconciler(ctx)
        self.wrapper = ReliabilityWrapper(ctx)
        self.retries = RetryQueueManager(ctx)
        self.ingestor = EventIngestor(ctx, self.wrapper)
        self._live_task: Optional[asyncio.Task[None]] = None
        self._ready = False

    @property
    def context(self) -> OracleContext:
        return self._ctx

    async def start(self) -> None:
        """Run the startup sequence and launch the background loops.

        Identity or catch-up failures propagate and the process should exit.
        """

        if self._live_task and not self._live_task.done():
            return
        await self.identity.reconcile()
        report = await self.retries.drain()
        LOGGER.info(
            "Startup retry pass: %d attempted, %d succeeded, %d dead-lettered",
            report.attempted,
            report.succeeded,
            report.dead_lettered,
        )
        await self.ingestor.catch_up()
        await self.retries.start()
        self._live_task = asyncio.create_task(self.ingestor.subscribe())
        self._ready = True
        LOGGER.info("Oracle relay is running")

    async def run(self) -> None:
        await self.start()
        if self._live_task:
            await self._live_task

    async def close(self) -> None:
        self._ready = False
        self.ingestor.stop()
        await self.retries.close()
        if self._live_task:
            self._live_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._live_task
            self._live_task = None
        await self._ctx.notifier.flush()

    async def health(self) -> Dict[str, Any]:
        ctx = self._ctx
        watermark = ctx.watermarks.load()
        queue = ctx.queue.load()
        return {
            "status": "ok" if self._ready else "starting",
            "network": ctx.config.network,
            "confidential": ctx.config.is_confidential,
            "oracle": ctx.chain.signer_address,
            "watermark": watermark.to_json() if watermark else None,
            "retryQueueDepth": len(queue),
            "retryLoopRunning": self.retries.running,
            "cursor": self.ingestor.cursor,
        }

    def metrics(self) -> bytes:
        return self._ctx.metrics.render()

    @property
    def metrics_content_type(self) -> str:
        return self._ctx.metrics.content_type


__all__ = ["OracleService"]
