"""
Run service - one pass of the whole pipeline.

Sequences poll, clean, schedule and send. Stages are independent: an
exception escaping one stage is logged and recorded, and the remaining
stages still run. Periodic triggering is left to an external scheduler
(cron, systemd timer, Kubernetes CronJob).
"""

import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from digester.channels.base import ChannelAdapter
from digester.channels.schemas import ChannelType
from digester.config.settings import Settings, get_settings
from digester.digests.builder import DigestSender, SendReport
from digester.digests.messaging import EmailProvider
from digester.digests.scheduler import DigestScheduler, ScheduleReport
from digester.fetcher.cleaner import ChannelCleaner, CleanReport
from digester.fetcher.poller import ChannelPoller, PollReport
from digester.observability.logging import bind_context, clear_context
from digester.observability.metrics import get_metrics
from digester.storage.repository import DigesterRepository

logger = structlog.get_logger(__name__)


@dataclass
class RunReport:
    """Combined outcome of one orchestrated run."""

    started: datetime
    poll: PollReport | None = None
    clean: CleanReport | None = None
    schedule: ScheduleReport | None = None
    send: SendReport | None = None
    stage_errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True if no stage raised and no item-level failure was counted."""
        if self.stage_errors:
            return False
        return not any(
            (
                self.poll and self.poll.channels_failed,
                self.clean and self.clean.channels_failed,
                self.schedule and self.schedule.failed,
                self.send and self.send.recipients_failed,
                self.send and self.send.lookup_failures,
            )
        )

    def summary(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "channels_polled": self.poll.channels_total if self.poll else None,
            "updates_inserted": self.poll.inserted if self.poll else None,
            "channels_cleaned": self.clean.channels_cleaned if self.clean else None,
            "digests_scheduled": self.schedule.scheduled if self.schedule else None,
            "digests_sent": self.send.digests_sent if self.send else None,
            "stage_errors": self.stage_errors,
        }


class RunOrchestrator:
    """
    Runs every pipeline stage once, in order.

    Usage:
        async with Database() as db:
            orchestrator = RunOrchestrator(
                DigesterRepository(db), build_adapters(), SendgridProvider()
            )
            report = await orchestrator.run_once()
    """

    def __init__(
        self,
        repository: DigesterRepository,
        adapters: dict[ChannelType, ChannelAdapter],
        provider: EmailProvider | None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self._poller = ChannelPoller(repository, adapters, settings)
        self._cleaner = ChannelCleaner(repository, adapters, settings)
        self._scheduler = DigestScheduler(repository)
        self._sender = DigestSender(repository, provider, settings) if provider else None
        self._metrics = get_metrics()

        if self._sender is None:
            logger.warning("No email provider configured, digests will not be sent")

    async def run_once(self, now: datetime | None = None) -> RunReport:
        now = now or datetime.now(timezone.utc)
        report = RunReport(started=now)

        bind_context(run_id=uuid.uuid4().hex[:12])
        try:
            logger.info("Run started", now=now.isoformat())

            report.poll = await self._stage("poll", self._poller.run, now, report)
            report.clean = await self._stage("clean", self._cleaner.run, now, report)
            report.schedule = await self._stage("schedule", self._scheduler.run, now, report)
            if self._sender is not None:
                report.send = await self._stage("send", self._sender.run, now, report)

            log = logger.info if report.ok else logger.warning
            log("Run completed", **report.summary())
        finally:
            clear_context()
        return report

    async def _stage(
        self,
        name: str,
        func: Callable[[datetime], Awaitable[Any]],
        now: datetime,
        report: RunReport,
    ) -> Any:
        start = time.monotonic()
        try:
            return await func(now)
        except Exception as e:
            logger.error("Stage failed", stage=name, error=str(e), exc_info=True)
            report.stage_errors[name] = str(e) or type(e).__name__
            return None
        finally:
            self._metrics.record_stage_duration(name, time.monotonic() - start)
