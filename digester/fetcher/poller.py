"""
Channel poller - fetches due channels and stores their new updates.

A channel is due when it was never fetched or its ``last_fetched`` is
older than the fetch interval. ``last_fetched`` is only advanced after
a fully successful pass, so a failed channel is retried on the next
run. Re-running on the same input inserts nothing new: repeated items
hit the ``(channel_id, url)`` uniqueness constraint.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from digester.channels.base import ChannelAdapter
from digester.channels.errors import FetchError
from digester.channels.schemas import Channel, ChannelType
from digester.config.settings import Settings, get_settings
from digester.fetcher.dedup import select_new
from digester.observability.metrics import get_metrics
from digester.storage.errors import InsertError
from digester.storage.repository import DigesterRepository

logger = structlog.get_logger(__name__)


@dataclass
class PollReport:
    """Outcome of one poller pass."""

    channels_total: int = 0
    channels_succeeded: int = 0
    inserted: int = 0
    duplicates: int = 0
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def channels_failed(self) -> int:
        return len(self.failures)


class ChannelPoller:
    """
    Polls every due channel through its adapter.

    Channels are processed concurrently, bounded by a semaphore. Each
    channel is isolated: any error is logged and recorded in the report
    without affecting other channels.

    Usage:
        poller = ChannelPoller(repository, build_adapters())
        report = await poller.run()
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
        self._interval = settings.fetch_interval
        self._window = settings.dedup_window
        self._timeout = settings.external_timeout_seconds
        self._concurrency = settings.fetch_concurrency
        self._metrics = get_metrics()

    async def run(self, now: datetime | None = None) -> PollReport:
        """Fetch all due channels once."""
        now = now or datetime.now(timezone.utc)
        channels = await self._repository.find_channels_due_for_fetch(self._interval)
        report = PollReport(channels_total=len(channels))

        logger.info("Polling channels", due=len(channels))

        semaphore = asyncio.Semaphore(self._concurrency)

        async def bounded(channel: Channel) -> None:
            async with semaphore:
                await self._poll_channel(channel, now, report)

        await asyncio.gather(*(bounded(c) for c in channels))

        logger.info(
            "Polling completed",
            channels=report.channels_total,
            succeeded=report.channels_succeeded,
            failed=report.channels_failed,
            inserted=report.inserted,
            duplicates=report.duplicates,
        )
        return report

    async def _poll_channel(
        self, channel: Channel, now: datetime, report: PollReport
    ) -> None:
        try:
            inserted, duplicates = await self._fetch_and_store(channel, now)
        except Exception as e:
            logger.error(
                "Failed to fetch channel",
                channel_id=channel.id,
                channel_type=channel.channel_type.value,
                ext_id=channel.ext_id,
                error=str(e) or type(e).__name__,
            )
            report.failures[channel.id] = str(e) or type(e).__name__
            self._metrics.record_channel_fetch(channel.channel_type.value, success=False)
            return

        report.channels_succeeded += 1
        report.inserted += inserted
        report.duplicates += duplicates
        self._metrics.record_channel_fetch(
            channel.channel_type.value,
            success=True,
            inserted=inserted,
            duplicates=duplicates,
        )

    async def _fetch_and_store(self, channel: Channel, now: datetime) -> tuple[int, int]:
        adapter = self._adapters.get(channel.channel_type)
        if adapter is None:
            raise FetchError(f"No adapter configured for {channel.channel_type.value}")

        last_known = await self._repository.find_newest_update(channel.id)
        try:
            fetched = await asyncio.wait_for(
                adapter.fetch_updates(channel.ext_id, last_known),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise FetchError(f"Fetch timed out after {self._timeout}s") from e

        accepted = select_new(fetched, last_known, now=now, window=self._window)

        inserted = duplicates = 0
        for raw in accepted:
            try:
                await self._repository.insert_update(channel.id, raw)
                inserted += 1
            except InsertError as e:
                if not e.is_duplicate:
                    raise
                duplicates += 1

        await self._repository.update_channel_last_fetched(channel.id)

        logger.debug(
            "Channel fetched",
            channel_id=channel.id,
            fetched=len(fetched),
            accepted=len(accepted),
            inserted=inserted,
            duplicates=duplicates,
        )
        return inserted, duplicates
