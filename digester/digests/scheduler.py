"""
Digest scheduler - keeps exactly one pending digest per subscription.

Subscriptions without an unsent digest get a new one whose due date is
the next occurrence of the subscription's wall-clock time in the
subscriber's timezone, stored in UTC.
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from digester.digests.schemas import Day, Frequency, Subscription
from digester.observability.metrics import get_metrics
from digester.storage.errors import InsertError
from digester.storage.repository import DigesterRepository

logger = structlog.get_logger(__name__)


def _is_later_today(due_time: time, now: datetime) -> bool:
    # Seconds are ignored: 09:00 evaluated at 09:00:30 has already passed
    return (due_time.hour, due_time.minute) > (now.hour, now.minute)


def next_due_date(
    frequency: Frequency,
    day: Day | None,
    due_time: time,
    now: datetime,
) -> datetime:
    """
    Compute the next occurrence of ``due_time`` after ``now``.

    Works on the wall clock of ``now``; the result carries the same
    tzinfo with seconds and microseconds cleared.
    """
    due = now.replace(
        hour=due_time.hour, minute=due_time.minute, second=0, microsecond=0
    )

    if frequency == Frequency.DAILY:
        if _is_later_today(due_time, now):
            return due
        return due + timedelta(days=1)

    if day is None:
        raise ValueError("Weekly frequency requires a day")

    today_idx = now.weekday()
    if day.index == today_idx and _is_later_today(due_time, now):
        return due

    days_ahead = (day.index - today_idx + 7) % 7 or 7
    return due + timedelta(days=days_ahead)


def subscriber_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to UTC."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone, using UTC", timezone=name)
        return ZoneInfo("UTC")


def due_date_for(subscription: Subscription, now: datetime) -> datetime:
    """Due date of the next digest of ``subscription`` in UTC."""
    local_now = now.astimezone(subscriber_zone(subscription.timezone))
    due = next_due_date(subscription.frequency, subscription.day, subscription.time, local_now)
    return due.astimezone(timezone.utc)


@dataclass
class ScheduleReport:
    """Outcome of one scheduler pass."""

    subscriptions_total: int = 0
    scheduled: int = 0
    already_pending: int = 0
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.failures)


class DigestScheduler:
    """
    Inserts the next digest for every subscription without one.

    Concurrent schedulers are safe: the partial unique index on pending
    digests turns a lost race into a DUPLICATE insert error, which
    counts as success.
    """

    def __init__(self, repository: DigesterRepository):
        self._repository = repository
        self._metrics = get_metrics()

    async def run(self, now: datetime | None = None) -> ScheduleReport:
        now = now or datetime.now(timezone.utc)
        subscriptions = await self._repository.find_subscriptions_without_pending_digest()
        report = ScheduleReport(subscriptions_total=len(subscriptions))

        logger.info("Scheduling digests", subscriptions=len(subscriptions))

        for subscription in subscriptions:
            due = due_date_for(subscription, now)
            try:
                await self._repository.insert_digest(subscription.id, due)
            except InsertError as e:
                if e.is_duplicate:
                    logger.info(
                        "Digest inserted in the meantime",
                        subscription_id=subscription.id,
                    )
                    report.already_pending += 1
                    self._metrics.record_digest_scheduled("duplicate")
                    continue
                logger.error(
                    "Failed to insert digest",
                    subscription_id=subscription.id,
                    due=due.isoformat(),
                    error=str(e),
                )
                report.failures[subscription.id] = str(e)
                self._metrics.record_digest_scheduled("error")
                continue

            report.scheduled += 1
            self._metrics.record_digest_scheduled("inserted")

        logger.info(
            "Scheduling completed",
            scheduled=report.scheduled,
            already_pending=report.already_pending,
            failed=report.failed,
        )
        return report
