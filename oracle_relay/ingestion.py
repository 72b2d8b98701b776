"""Historical catch-up and live polling of contract events."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Mapping, Optional

from .abi import EVENT_NAMES
from .context import OracleContext
from .errors import CatchUpError
from .handlers import HANDLERS, Handler
from .models import ChainEvent, Watermark
from .reliability import Outcome, ReliabilityWrapper

LOGGER = logging.getLogger(__name__)

_LIVE_ERROR_BACKOFF = 4


def compute_from_block(watermark: Optional[Watermark], latest_block: int, lookback: int) -> int:
    """First block to scan on startup.

    Without a watermark only the recent ``lookback`` window is scanned. A
    watermark with a log index re-scans its block so later events in that
    block are not skipped.
    """

    if watermark is None:
        return max(0, latest_block - lookback)
    if watermark.last_processed_log_index is not None:
        return watermark.last_processed_block
    return watermark.last_processed_block + 1


class EventIngestor:
    """Feed contract events in chain order through the reliability wrapper."""

    def __init__(
        self,
        ctx: OracleContext,
        wrapper: ReliabilityWrapper,
        *,
        handlers: Optional[Mapping[str, Handler]] = None,
    ) -> None:
        self._ctx = ctx
        self._wrapper = wrapper
        self._handlers = dict(handlers or HANDLERS)
        self._cursor: Optional[int] = None
        self._stopped = asyncio.Event()

    @property
    def cursor(self) -> Optional[int]:
        """Last block fully scanned by this process."""

        return self._cursor

    async def _fetch_range(self, from_block: int, to_block: int) -> List[ChainEvent]:
        batches = await asyncio.gather(
            *(self._ctx.chain.get_events(name, from_block, to_block) for name in EVENT_NAMES)
        )
        events = [event for batch in batches for event in batch]
        events.sort(key=lambda event: event.sort_key)
        return events

    async def _process_range(self, from_block: int, to_block: int) -> None:
        ctx = self._ctx
        events = await self._fetch_range(from_block, to_block)
        watermark = ctx.watermarks.load()
        clean = True
        for event in events:
            if watermark is not None and event.position <= watermark.position:
                LOGGER.debug("Skipping already processed %s at %s", event.name, event.position)
                continue
            handler = self._handlers[event.name]
            outcome = await self._wrapper.handle_and_record(event.name, handler, event.args, event)
            if outcome is Outcome.FAILED:
                clean = False
        if clean:
            if ctx.watermarks.advance(to_block):
                ctx.metrics.watermark.set(to_block)
        self._cursor = to_block

    async def catch_up(self) -> int:
        """Replay every event between the watermark and the chain head.

        Returns the last block scanned. Raises :class:`CatchUpError` after
        alerting if the scan cannot complete.
        """

        ctx = self._ctx
        try:
            latest = await ctx.chain.latest_block()
            start = compute_from_block(ctx.watermarks.load(), latest, ctx.config.recent_lookback_blocks)
            LOGGER.info("Catching up on events from block %s to %s", start, latest)
            batch = ctx.config.event_batch_size
            current = start
            while current <= latest:
                end = min(current + batch - 1, latest)
                LOGGER.debug("Scanning blocks %s to %s", current, end)
                await self._process_range(current, end)
                current = end + 1
        except Exception as exc:
            LOGGER.exception("Historical catch-up failed")
            await ctx.notifier.notify(
                "Oracle catch-up failed",
                f"The historical event scan could not complete: {exc}",
            )
            raise CatchUpError(f"Catch-up failed: {exc}") from exc
        self._cursor = max(self._cursor or 0, latest)
        LOGGER.info("Catch-up complete at block %s", latest)
        return latest

    async def subscribe(self) -> None:
        """Poll for new events until :meth:`stop` is called."""

        ctx = self._ctx
        LOGGER.info("Listening for new events every %.1fs", ctx.config.poll_interval_seconds)
        while not self._stopped.is_set():
            delay = ctx.config.poll_interval_seconds
            try:
                latest = await ctx.chain.latest_block()
                if self._cursor is None:
                    self._cursor = latest
                if latest > self._cursor:
                    end = min(self._cursor + ctx.config.event_batch_size, latest)
                    await self._process_range(self._cursor + 1, end)
            except Exception as exc:
                LOGGER.error("Live event poll failed: %s", exc)
                delay = max(delay, _LIVE_ERROR_BACKOFF)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped.set()


__all__ = ["EventIngestor", "compute_from_block"]
