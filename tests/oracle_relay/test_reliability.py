from __future__ import annotations

import asyncio

from oracle_relay.errors import DecryptionError, StorageError
from oracle_relay.models import Watermark
from oracle_relay.reliability import Outcome, ReliabilityWrapper


async def _ok(ctx, args, event) -> None:
    return None


async def _transient(ctx, args, event) -> None:
    raise StorageError("upload failed: 503", status=503)


async def _fatal(ctx, args, event) -> None:
    raise DecryptionError("authentication tag mismatch")


def test_success_advances_watermark_to_event(make_context, make_event) -> None:
    ctx = make_context()
    event = make_event("PromptSubmitted", 120, log_index=4)

    outcome = asyncio.run(ReliabilityWrapper(ctx).handle_and_record(event.name, _ok, event.args, event))

    assert outcome is Outcome.HANDLED
    assert ctx.watermarks.load() == Watermark(last_processed_block=120, last_processed_log_index=4)
    assert ctx.queue.load() == []
    assert ctx.notifier.alerts == []


def test_retryable_failure_is_queued_before_advancing(make_context, make_event) -> None:
    ctx = make_context()
    event = make_event("PromptSubmitted", 120, tx_index=2, log_index=4, args={"conversationId": 7, "payload": b"\x01\x02"})

    outcome = asyncio.run(ReliabilityWrapper(ctx).handle_and_record(event.name, _transient, event.args, event))

    assert outcome is Outcome.QUEUED
    (job,) = ctx.queue.load()
    assert job.event_name == "PromptSubmitted"
    assert job.retry_count == 0
    assert job.block_number == 120
    assert job.transaction_hash == event.transaction_hash
    assert job.event_args == {"conversationId": 7, "payload": "0x0102"}
    assert job.next_attempt_at == ctx.clock() + ctx.config.base_retry_delay_seconds
    assert "503" in job.last_error
    assert ctx.watermarks.load().position == (120, 4)
    assert ctx.notifier.alerts == []


def test_fatal_failure_alerts_without_queueing_or_advancing(make_context, make_event) -> None:
    ctx = make_context()
    ctx.watermarks.advance(100)
    event = make_event("MetadataUpdateRequested", 120)

    outcome = asyncio.run(ReliabilityWrapper(ctx).handle_and_record(event.name, _fatal, event.args, event))

    assert outcome is Outcome.FAILED
    assert ctx.queue.load() == []
    assert ctx.watermarks.load() == Watermark(last_processed_block=100)
    assert ctx.notifier.titles() == ["Fatal error processing MetadataUpdateRequested"]
    assert ctx.notifier.alerts[0]["severity"] == "critical"
    assert "authentication tag mismatch" in ctx.notifier.alerts[0]["message"]


def test_queue_write_failure_is_treated_as_fatal(make_context, make_event) -> None:
    ctx = make_context()

    def broken_append(job) -> None:
        raise OSError("disk full")

    ctx.queue.append = broken_append
    event = make_event("PromptSubmitted", 50)

    outcome = asyncio.run(ReliabilityWrapper(ctx).handle_and_record(event.name, _transient, event.args, event))

    assert outcome is Outcome.FAILED
    assert ctx.watermarks.load() is None
    assert ctx.notifier.titles() == ["Fatal error processing PromptSubmitted"]


def test_old_events_raise_a_lag_warning(make_context, make_event) -> None:
    ctx = make_context()
    event = make_event("PromptSubmitted", 77)
    ctx.chain.timestamps[77] = int(ctx.clock() - 900)

    outcome = asyncio.run(ReliabilityWrapper(ctx).handle_and_record(event.name, _ok, event.args, event))

    assert outcome is Outcome.HANDLED
    assert ctx.notifier.titles() == ["High oracle processing lag"]
    assert ctx.notifier.alerts[0]["severity"] == "warning"


def test_recent_events_and_missing_timestamps_do_not_alert(make_context, make_event) -> None:
    ctx = make_context()
    wrapper = ReliabilityWrapper(ctx)
    recent = make_event("PromptSubmitted", 10)
    unknown = make_event("PromptSubmitted", 11)
    ctx.chain.timestamps[10] = int(ctx.clock() - 30)

    asyncio.run(wrapper.handle_and_record(recent.name, _ok, recent.args, recent))
    asyncio.run(wrapper.handle_and_record(unknown.name, _ok, unknown.args, unknown))

    assert ctx.notifier.alerts == []
    assert ctx.watermarks.load().position == (11, 0)
