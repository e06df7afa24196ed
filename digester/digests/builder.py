"""
Digest builder and sender.

Due digests are grouped per recipient so each subscriber gets a single
email covering all of their subscriptions. A digest is stamped as sent
only after the provider accepted the email; failed sends stay pending
and are retried on the next run.

Each run takes one cutoff timestamp. A digest contains the updates
inserted after the previous digest was sent and up to the cutoff, and
is stamped with the cutoff as its ``sent`` time.
"""

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from digester.config.settings import Settings, get_settings
from digester.digests.messaging import EmailProvider
from digester.digests.schemas import Digest, DigestGroup, DigestUpdate, Subscription
from digester.observability.metrics import get_metrics
from digester.storage.repository import DigesterRepository

logger = structlog.get_logger(__name__)

# Longer subjects tend to be flagged as spam
MAX_SUBJECT_LENGTH = 50

_ENV_PREFIXES = {
    "development": "[Dev] ",
    "staging": "[Stg] ",
}


def create_subject(environment: str, titles: list[str]) -> str:
    """
    Build the email subject from the group titles.

    Titles are appended while the subject stays within 50 characters;
    skipped titles add " and more". A single title that does not fit is
    used anyway, unabridged.
    """
    subject = _ENV_PREFIXES.get(environment, "") + "Digests from "

    added: list[str] = []
    skipped = False
    for title in titles:
        candidate = subject + ", ".join(added)
        if len(candidate) + len(title) > MAX_SUBJECT_LENGTH:
            skipped = True
        else:
            added.append(title)

    if not added:
        return subject + (titles[0] if titles else "")

    subject += ", ".join(added)
    if skipped:
        subject += " and more"
    return subject


@dataclass
class SendReport:
    """Outcome of one sender pass."""

    digests_due: int = 0
    digests_sent: int = 0
    digests_empty: int = 0
    emails_sent: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    # Digests whose subscription could not be loaded, by digest id
    lookup_failures: dict[int, str] = field(default_factory=dict)

    @property
    def recipients_failed(self) -> int:
        return len(self.failures)


class DigestSender:
    """
    Collects the updates of due digests and emails them.

    Usage:
        sender = DigestSender(repository, SendgridProvider())
        report = await sender.run()
    """

    def __init__(
        self,
        repository: DigesterRepository,
        provider: EmailProvider,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        settings = settings or get_settings()
        self._repository = repository
        self._provider = provider
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._environment = settings.environment
        self._metrics = get_metrics()

    async def run(self, now: datetime | None = None) -> SendReport:
        now = now or datetime.now(timezone.utc)
        due = await self._repository.find_due_digests(now)
        report = SendReport(digests_due=len(due))

        # Upper bound of the collected updates and the stored "sent" time
        cutoff = self._clock()

        batches = await self._group_by_recipient(due, report)
        logger.info("Sending digests", digests=len(due), recipients=len(batches))

        for recipient, batch in batches.items():
            try:
                await self._send_batch(recipient, batch, cutoff, report)
            except Exception as e:
                logger.error(
                    "Failed to send digest",
                    recipient=recipient,
                    digest_ids=[d.id for d, _ in batch],
                    error=str(e),
                )
                report.failures[recipient] = str(e)
                self._metrics.record_digest_sent("error", len(batch))

        logger.info(
            "Sending completed",
            emails=report.emails_sent,
            sent=report.digests_sent,
            empty=report.digests_empty,
            failed=report.recipients_failed,
            lookup_failed=len(report.lookup_failures),
        )
        return report

    async def _group_by_recipient(
        self, digests: list[Digest], report: SendReport
    ) -> dict[str, list[tuple[Digest, Subscription]]]:
        batches: dict[str, list[tuple[Digest, Subscription]]] = defaultdict(list)
        for digest in digests:
            try:
                subscription = await self._repository.find_subscription_by_id(
                    digest.subscription_id
                )
            except Exception as e:
                logger.error(
                    "Failed to load subscription of digest",
                    digest_id=digest.id,
                    subscription_id=digest.subscription_id,
                    error=str(e) or type(e).__name__,
                )
                report.lookup_failures[digest.id] = str(e) or type(e).__name__
                self._metrics.record_digest_sent("error")
                continue
            if subscription is None:
                logger.warning(
                    "Subscription of digest not found",
                    digest_id=digest.id,
                    subscription_id=digest.subscription_id,
                )
                continue
            batches[subscription.email].append((digest, subscription))
        return batches

    async def _send_batch(
        self,
        recipient: str,
        batch: list[tuple[Digest, Subscription]],
        cutoff: datetime,
        report: SendReport,
    ) -> None:
        groups: list[DigestGroup] = []
        for digest, subscription in batch:
            group = await self._build_group(digest, subscription, cutoff)
            if group is not None:
                groups.append(group)

        if not groups:
            # Nothing new since the last digest: close it without an email
            logger.info("No updates for recipient", recipient=recipient)
            await self._mark_sent(batch, cutoff)
            report.digests_empty += len(batch)
            self._metrics.record_digest_sent("empty", len(batch))
            return

        subject = create_subject(self._environment, [g.title for g in groups])
        if not await self._provider.send_digest(recipient, subject, groups):
            logger.warning(
                "Email provider rejected digest",
                provider=self._provider.name,
                recipient=recipient,
            )
            report.failures[recipient] = f"{self._provider.name} rejected the email"
            self._metrics.record_digest_sent("error", len(batch))
            return

        await self._mark_sent(batch, cutoff)
        report.emails_sent += 1
        report.digests_sent += len(batch)
        self._metrics.record_digest_sent("sent", len(batch))

    async def _build_group(
        self, digest: Digest, subscription: Subscription, cutoff: datetime
    ) -> DigestGroup | None:
        previous = await self._repository.find_previous_sent_digest(subscription.id)
        since = previous.sent if previous else None

        updates = await self._repository.find_updates_since(subscription, since, cutoff)
        if not updates:
            return None

        if subscription.is_list:
            channel_list = await self._repository.find_list_by_id(subscription.list_id)
            title = channel_list.name if channel_list else None
        else:
            channel = await self._repository.find_channel_by_id(subscription.channel_id)
            title = channel.name if channel else None

        if title is None:
            logger.warning(
                "Subscribed channel or list not found",
                digest_id=digest.id,
                channel_id=subscription.channel_id,
                list_id=subscription.list_id,
            )
            return None

        return DigestGroup(
            title=title,
            updates=[DigestUpdate(title=u.title, url=u.url) for u in updates],
        )

    async def _mark_sent(
        self, batch: list[tuple[Digest, Subscription]], cutoff: datetime
    ) -> None:
        # The next digest starts right after this cutoff
        for digest, _ in batch:
            await self._repository.mark_digest_sent(digest.id, cutoff)
