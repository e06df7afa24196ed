"""
Channel cleaner - retention and deletion reconciliation.

Two passes over channels whose ``last_cleaned`` is older than the clean
interval:

1. Retention: updates older than the retention period are deleted,
   except the newest one of each channel.
2. Reconciliation (Twitter only): stored tweet ids are checked against
   the API and tweets deleted at the source are removed locally.

Twitter channels are handled in batches to bound query sizes; the API
lookup accepts at most 100 ids per call.
"""

import asyncio
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TypeVar

import structlog

from digester.channels.base import ChannelAdapter
from digester.channels.errors import FetchError
from digester.channels.schemas import Channel, ChannelType
from digester.channels.twitter import MAX_LOOKUP_IDS
from digester.config.settings import Settings, get_settings
from digester.observability.metrics import get_metrics
from digester.storage.repository import DigesterRepository

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    for i in range(0, len(items), size):
        yield items[i : i + size]


@dataclass
class CleanReport:
    """Outcome of one cleaner pass."""

    channels_total: int = 0
    channels_cleaned: int = 0
    retention_deleted: int = 0
    source_deleted: int = 0
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def channels_failed(self) -> int:
        return len(self.failures)


class ChannelCleaner:
    """
    Prunes old and source-deleted updates.

    A channel is stamped as cleaned only if every step that applies to
    it succeeded; a failing reconciliation batch leaves just its own
    channels for the next run.
    """

    def __init__(
        self,
        repository: DigesterRepository,
        adapters: dict[ChannelType, ChannelAdapter],
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self._repository = repository
        self._adapters = adapters
        self._interval = settings.clean_interval
        self._retention = settings.retention
        self._channel_batch_size = settings.clean_channel_batch_size
        self._lookup_batch_size = min(settings.deletion_lookup_batch_size, MAX_LOOKUP_IDS)
        self._timeout = settings.external_timeout_seconds
        self._metrics = get_metrics()

    async def run(self, now: datetime | None = None) -> CleanReport:
        now = now or datetime.now(timezone.utc)
        channels = await self._repository.find_channels_due_for_clean(self._interval)
        report = CleanReport(channels_total=len(channels))

        logger.info("Cleaning channels", due=len(channels))

        cleaned = await self._apply_retention(channels, now - self._retention, report)

        twitter = [
            c for c in channels
            if c.channel_type == ChannelType.TWITTER and c.id in cleaned
        ]
        if twitter:
            cleaned -= await self._reconcile_deleted(twitter, report)

        if cleaned:
            await self._repository.update_channels_last_cleaned(sorted(cleaned))
        report.channels_cleaned = len(cleaned)

        logger.info(
            "Cleaning completed",
            channels=report.channels_total,
            cleaned=report.channels_cleaned,
            failed=report.channels_failed,
            retention_deleted=report.retention_deleted,
            source_deleted=report.source_deleted,
        )
        return report

    async def _apply_retention(
        self, channels: list[Channel], cutoff: datetime, report: CleanReport
    ) -> set[int]:
        """Delete old updates per channel; return ids of channels that succeeded."""
        succeeded: set[int] = set()
        for channel in channels:
            try:
                deleted = await self._repository.delete_updates_older_than(
                    channel.id, cutoff
                )
            except Exception as e:
                logger.error(
                    "Failed to delete old updates",
                    channel_id=channel.id,
                    error=str(e),
                )
                report.failures[channel.id] = str(e)
                continue

            if deleted:
                logger.debug("Deleted old updates", channel_id=channel.id, count=deleted)
            report.retention_deleted += deleted
            self._metrics.record_updates_deleted("retention", deleted)
            succeeded.add(channel.id)
        return succeeded

    async def _reconcile_deleted(
        self, channels: list[Channel], report: CleanReport
    ) -> set[int]:
        """Remove tweets deleted at the source; return ids of failed channels."""
        failed: set[int] = set()
        adapter = self._adapters.get(ChannelType.TWITTER)
        if adapter is None:
            logger.warning(
                "No twitter adapter configured, skipping deletion reconciliation",
                channels=len(channels),
            )
            for channel in channels:
                report.failures[channel.id] = "no twitter adapter configured"
                failed.add(channel.id)
            return failed

        for batch in chunked(channels, self._channel_batch_size):
            ids = [c.id for c in batch]
            try:
                deleted = await self._reconcile_batch(adapter, ids)
            except Exception as e:
                logger.error(
                    "Deletion reconciliation failed",
                    channel_ids=ids,
                    error=str(e) or type(e).__name__,
                )
                for channel_id in ids:
                    report.failures[channel_id] = str(e) or type(e).__name__
                failed.update(ids)
                continue

            report.source_deleted += deleted
            self._metrics.record_updates_deleted("deleted_at_source", deleted)
        return failed

    async def _reconcile_batch(self, adapter: ChannelAdapter, channel_ids: list[int]) -> int:
        ext_ids = await self._repository.find_updates_ext_ids(channel_ids)
        if not ext_ids:
            return 0

        to_delete: list[int] = []
        for chunk in chunked(list(ext_ids.items()), self._lookup_batch_size):
            try:
                gone = set(
                    await asyncio.wait_for(
                        adapter.find_deleted([ext_id for _, ext_id in chunk]),
                        timeout=self._timeout,
                    )
                )
            except asyncio.TimeoutError as e:
                raise FetchError(f"Tweet lookup timed out after {self._timeout}s") from e
            to_delete.extend(update_id for update_id, ext_id in chunk if ext_id in gone)

        if not to_delete:
            return 0

        deleted = await self._repository.delete_updates_by_id(to_delete)
        logger.info(
            "Deleted updates removed at source",
            channel_ids=channel_ids,
            count=deleted,
        )
        return deleted
