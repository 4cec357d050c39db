"""
Prometheus metrics collection.

Stateless relay with in-memory metrics; Prometheus handles storage.
Each collector owns its registry so several apps can live in one process.
"""

import time
from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

from .. import __version__

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """Centralized metrics collection for TeleRelay."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        # Service info
        self.service_info = Info(
            "telerelay_service",
            "TeleRelay service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": __version__,
            "service": "telerelay",
        })

        # Inbound relay metrics
        self.relay_requests_total = Counter(
            "relay_requests_total",
            "Total telemetry requests handled by the relay",
            ["outcome"],
            registry=self.registry,
        )

        self.relay_request_bytes = Histogram(
            "relay_request_bytes",
            "Size of relayed telemetry bodies in bytes",
            buckets=[256, 1024, 4096, 16384, 65536, 262144, 1048576, 4194304],
            registry=self.registry,
        )

        # Canonical destination metrics
        self.destination_requests_total = Counter(
            "destination_requests_total",
            "Total requests forwarded to the canonical destination",
            ["status_code"],
            registry=self.registry,
        )

        self.destination_request_duration = Histogram(
            "destination_request_duration_seconds",
            "Canonical destination request duration in seconds",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        # Decoding metrics
        self.batch_size_records = Histogram(
            "telemetry_batch_size_records",
            "Number of records per decoded telemetry batch",
            buckets=[0, 1, 5, 10, 25, 50, 100, 250, 500, 1000],
            registry=self.registry,
        )

        self.decode_errors_total = Counter(
            "telemetry_decode_errors_total",
            "Total telemetry payloads that could not be decoded",
            registry=self.registry,
        )

        # Sink metrics
        self.sink_replications_total = Counter(
            "sink_replications_total",
            "Total sink replications",
            ["sink", "outcome"],
            registry=self.registry,
        )

        self.sink_duration = Histogram(
            "sink_replication_duration_seconds",
            "Sink replication duration in seconds",
            ["sink"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        self.uptime_seconds = Gauge(
            "uptime_seconds",
            "Service uptime in seconds",
            registry=self.registry,
        )

        self._start_time = time.time()

    def record_request(self, outcome: str, body_bytes: int = 0) -> None:
        """Record an inbound relay request."""
        self.relay_requests_total.labels(outcome=outcome).inc()
        if body_bytes > 0:
            self.relay_request_bytes.observe(body_bytes)

    def record_destination(self, status_code: int, duration_seconds: float) -> None:
        """Record a canonical destination call. Transport failures use status_code 0."""
        self.destination_requests_total.labels(status_code=str(status_code)).inc()
        self.destination_request_duration.observe(duration_seconds)

    def record_batch(self, records: int) -> None:
        self.batch_size_records.observe(records)

    def record_decode_error(self) -> None:
        self.decode_errors_total.inc()

    def record_sink(self, sink: str, success: bool, duration_seconds: float) -> None:
        """Record the outcome of one sink replication."""
        self.sink_replications_total.labels(
            sink=sink,
            outcome="success" if success else "failure",
        ).inc()
        self.sink_duration.labels(sink=sink).observe(duration_seconds)

    def update_system_metrics(self) -> None:
        self.uptime_seconds.set(time.time() - self._start_time)
