"""Email delivery of digests.

Provides an ABC for email providers plus the SendGrid implementation,
which renders digests through a dynamic template.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from digester.config.settings import get_settings
from digester.digests.schemas import DigestGroup

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailProvider(ABC):
    """Abstract base for digest email delivery."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider (e.g. 'sendgrid')."""

    @abstractmethod
    async def send_digest(
        self, recipient: str, subject: str, groups: list[DigestGroup]
    ) -> bool:
        """Deliver one digest email.

        Args:
            recipient: Email address of the subscriber.
            subject: Subject line, already prefixed for the environment.
            groups: Non-empty content groups, one per channel or list.

        Returns:
            True if the provider accepted the email, False otherwise.
        """


class SendgridProvider(EmailProvider):
    """Sends digests through the SendGrid v3 mail API.

    Creates a new ``httpx.AsyncClient`` per call; a run sends at most one
    email per recipient, so pooling buys nothing.
    """

    def __init__(
        self,
        api_key: str | None = None,
        template_id: str | None = None,
        from_address: str | None = None,
        from_name: str | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key or settings.sendgrid_api_key
        self._template_id = template_id or settings.sendgrid_template_id
        self._from_address = from_address or settings.email_from_address
        self._from_name = from_name or settings.email_from_name
        self._timeout = timeout or settings.external_timeout_seconds

    @property
    def name(self) -> str:
        return "sendgrid"

    def _build_payload(
        self, recipient: str, subject: str, groups: list[DigestGroup]
    ) -> dict:
        """Build the dynamic template request for one recipient."""
        return {
            "from": {"email": self._from_address, "name": self._from_name},
            "template_id": self._template_id,
            "personalizations": [
                {
                    "to": [{"email": recipient, "name": recipient}],
                    "dynamic_template_data": {
                        "subject": subject,
                        "subscriptions": [g.model_dump() for g in groups],
                    },
                }
            ],
        }

    async def send_digest(
        self, recipient: str, subject: str, groups: list[DigestGroup]
    ) -> bool:
        payload = self._build_payload(recipient, subject, groups)
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(SENDGRID_SEND_URL, json=payload, headers=headers)
                if resp.is_success:
                    return True
                logger.warning(
                    "SendGrid returned %d for %s: %s",
                    resp.status_code, recipient, resp.text,
                )
                return False
        except httpx.TimeoutException:
            logger.warning("SendGrid timed out for %s", recipient)
            return False
        except httpx.HTTPError as e:
            logger.warning("SendGrid request failed for %s: %s", recipient, e)
            return False
