"""Prometheus instrumentation for the relay."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest


class OracleMetrics:
    """Counters and gauges registered in a private registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.events = Counter(
            "oracle_events_total",
            "Events routed through the reliability wrapper",
            labelnames=("event", "outcome"),
            registry=self.registry,
        )
        self.retry_attempts = Counter(
            "oracle_retry_attempts_total",
            "Retry-queue attempts by outcome",
            labelnames=("event", "outcome"),
            registry=self.registry,
        )
        self.dead_letters = Counter(
            "oracle_dead_letters_total",
            "Jobs dropped after exhausting their retries",
            labelnames=("event",),
            registry=self.registry,
        )
        self.queue_depth = Gauge(
            "oracle_retry_queue_depth",
            "Jobs currently waiting in the retry queue",
            registry=self.registry,
        )
        self.watermark = Gauge(
            "oracle_watermark_block",
            "Block of the last processed event",
            registry=self.registry,
        )
        self.event_lag = Gauge(
            "oracle_event_lag_seconds",
            "Age of the most recently handled event's block",
            registry=self.registry,
        )

    def render(self) -> bytes:
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


__all__ = ["OracleMetrics"]
