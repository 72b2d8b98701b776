"""Single classification point between handlers and durable state."""

from __future__ import annotations

import enum
import logging
from typing import Any, Mapping

from .context import OracleContext
from .errors import Classification, classify
from .handlers import Handler
from .models import ChainEvent, FailedJob

LOGGER = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    HANDLED = "handled"
    QUEUED = "queued"
    FAILED = "failed"


class ReliabilityWrapper:
    """Run a handler and record the event's fate.

    Success advances the watermark. A retryable failure is queued, then the
    watermark advances. A fatal failure raises a critical alert and leaves the
    watermark where it was.
    """

    def __init__(self, ctx: OracleContext) -> None:
        self._ctx = ctx

    async def handle_and_record(
        self,
        event_name: str,
        handler: Handler,
        args: Mapping[str, Any],
        event: ChainEvent,
    ) -> Outcome:
        ctx = self._ctx
        await self._check_lag(event_name, event)
        try:
            async with ctx.worker_lock:
                await handler(ctx, args, event)
        except Exception as exc:
            return await self._record_failure(event_name, event, exc)

        self._advance(event)
        ctx.metrics.events.labels(event_name, Outcome.HANDLED.value).inc()
        return Outcome.HANDLED

    async def _record_failure(self, event_name: str, event: ChainEvent, exc: Exception) -> Outcome:
        ctx = self._ctx
        if classify(exc) is Classification.RETRYABLE:
            job = FailedJob(
                event_name=event_name,
                event_args=event.json_args(),
                block_number=event.block_number,
                transaction_hash=event.transaction_hash,
                transaction_index=event.transaction_index,
                log_index=event.log_index,
                retry_count=0,
                next_attempt_at=ctx.clock() + ctx.config.base_retry_delay_seconds,
                last_error=str(exc),
            )
            try:
                ctx.queue.append(job)
            except Exception as queue_exc:
                LOGGER.error("Could not queue %s from block %s: %s", event_name, event.block_number, queue_exc)
                await self._alert_fatal(event_name, event, queue_exc)
                return Outcome.FAILED
            LOGGER.warning(
                "Queued %s from block %s for retry: %s",
                event_name,
                event.block_number,
                exc,
                extra={"transaction": event.transaction_hash},
            )
            self._advance(event)
            ctx.metrics.events.labels(event_name, Outcome.QUEUED.value).inc()
            ctx.metrics.queue_depth.inc()
            return Outcome.QUEUED

        LOGGER.error("Fatal error handling %s from block %s: %s", event_name, event.block_number, exc)
        await self._alert_fatal(event_name, event, exc)
        return Outcome.FAILED

    async def _alert_fatal(self, event_name: str, event: ChainEvent, exc: BaseException) -> None:
        ctx = self._ctx
        ctx.metrics.events.labels(event_name, Outcome.FAILED.value).inc()
        await ctx.notifier.notify(
            f"Fatal error processing {event_name}",
            f"Event {event_name} in block {event.block_number} (tx {event.transaction_hash}) "
            f"could not be processed and was not queued for retry.\n\nError: {exc}",
            metadata={
                "event": event_name,
                "blockNumber": event.block_number,
                "transactionHash": event.transaction_hash,
            },
        )

    async def _check_lag(self, event_name: str, event: ChainEvent) -> None:
        ctx = self._ctx
        try:
            timestamp = await ctx.chain.block_timestamp(event.block_number)
        except Exception as exc:
            LOGGER.warning("Could not read timestamp of block %s: %s", event.block_number, exc)
            return
        lag = ctx.clock() - timestamp
        ctx.metrics.event_lag.set(max(lag, 0.0))
        if lag > ctx.config.lag_alert_threshold_seconds:
            LOGGER.warning("High processing lag of %.0fs for %s in block %s", lag, event_name, event.block_number)
            ctx.notifier.notify_nowait(
                "High oracle processing lag",
                f"{event_name} in block {event.block_number} is being processed {lag:.0f}s after it was mined.",
                severity="warning",
                metadata={"event": event_name, "blockNumber": event.block_number, "lagSeconds": round(lag)},
            )

    def _advance(self, event: ChainEvent) -> None:
        if self._ctx.watermarks.advance(event.block_number, event.log_index):
            self._ctx.metrics.watermark.set(event.block_number)


__all__ = ["Outcome", "ReliabilityWrapper"]
