"""
Prometheus metrics for the fetch, clean and digest stages.

A single run is short-lived, so the HTTP exporter is optional and only
started when the CLI is given a metrics port.
"""

import logging

from prometheus_client import Counter, Histogram, start_http_server

from digester.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for stage durations (in seconds)
STAGE_BUCKETS = (0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the digester pipeline.

    Usage:
        metrics = get_metrics()
        metrics.record_channel_fetch("rss_feed", success=True, inserted=3)
    """

    def __init__(self):
        self.channels_fetched = Counter(
            "digester_channels_fetched_total",
            "Channels polled, by outcome",
            ["channel_type", "status"],  # status: success, error
        )

        self.updates_inserted = Counter(
            "digester_updates_inserted_total",
            "Updates persisted by the poller",
            ["channel_type"],
        )

        self.updates_duplicate = Counter(
            "digester_updates_duplicate_total",
            "Updates rejected by the uniqueness constraint",
            ["channel_type"],
        )

        self.updates_deleted = Counter(
            "digester_updates_deleted_total",
            "Updates removed by the cleaner",
            ["reason"],  # retention, deleted_at_source
        )

        self.digests_scheduled = Counter(
            "digester_digests_scheduled_total",
            "Digest rows inserted by the scheduler",
            ["status"],  # inserted, duplicate, error
        )

        self.digests_sent = Counter(
            "digester_digests_sent_total",
            "Digest emails handled by the sender",
            ["status"],  # sent, empty, error
        )

        self.stage_duration = Histogram(
            "digester_stage_duration_seconds",
            "Duration of one orchestrator stage",
            ["stage"],
            buckets=STAGE_BUCKETS,
        )

        self._server_started = False

    def start_server(self, port: int | None = None) -> None:
        """Start the Prometheus HTTP exporter (idempotent)."""
        if self._server_started:
            return
        port = port or get_settings().metrics_port
        start_http_server(port)
        self._server_started = True
        logger.info("Metrics server started on port %d", port)

    def record_channel_fetch(
        self,
        channel_type: str,
        success: bool,
        inserted: int = 0,
        duplicates: int = 0,
    ) -> None:
        status = "success" if success else "error"
        self.channels_fetched.labels(channel_type=channel_type, status=status).inc()
        if inserted:
            self.updates_inserted.labels(channel_type=channel_type).inc(inserted)
        if duplicates:
            self.updates_duplicate.labels(channel_type=channel_type).inc(duplicates)

    def record_updates_deleted(self, reason: str, count: int) -> None:
        if count:
            self.updates_deleted.labels(reason=reason).inc(count)

    def record_digest_scheduled(self, status: str) -> None:
        self.digests_scheduled.labels(status=status).inc()

    def record_digest_sent(self, status: str, count: int = 1) -> None:
        self.digests_sent.labels(status=status).inc(count)

    def record_stage_duration(self, stage: str, seconds: float) -> None:
        self.stage_duration.labels(stage=stage).observe(seconds)


# Global metrics instance; prometheus_client forbids registering twice
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
