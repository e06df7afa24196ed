"""
Channel adapter interface and shared functionality.

Every channel type (RSS feed, GitHub releases, Twitter account) provides
the same capability set:

- validate_or_sanitize(): turn user input into the canonical ``ext_id``
- search(): confirm a channel exists against the live provider
- fetch_updates(): return every item the provider currently reports

Selecting the "new" items happens in ``digester.fetcher.dedup``;
provider publish dates are unreliable.
"""

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from digester.channels.errors import SearchError, SearchErrorKind
from digester.channels.http_client import HTTPClientError, HTTPTimeoutError
from digester.channels.schemas import ChannelInfo, ChannelType, RawUpdate, Update

logger = logging.getLogger(__name__)


@dataclass
class RateLimiter:
    """
    Simple token bucket rate limiter.

    Allows `rate` requests per minute with burst capacity.
    """

    rate: int  # requests per minute
    _tokens: float = field(init=False)
    _last_update: float = field(init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.rate)
        self._last_update = time.monotonic()

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_update
            self._last_update = now

            self._tokens = min(
                float(self.rate),
                self._tokens + elapsed * (self.rate / 60.0),
            )

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * 60.0 / self.rate
                logger.debug("Rate limited, waiting %.2fs", wait_time)
                await asyncio.sleep(wait_time)
                self._tokens = 0
            else:
                self._tokens -= 1


class ChannelAdapter(ABC):
    """
    Abstract base class for channel adapters.

    Subclasses must implement:
        - channel_type: ChannelType value handled by the adapter
        - validate_or_sanitize(), search(), fetch_updates()

    Subclasses MUST call ``await self._rate_limiter.acquire()`` before
    each HTTP request to the provider.
    """

    def __init__(self, rate_limit: int = 60):
        self._rate_limiter = RateLimiter(rate=rate_limit)

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType:
        ...

    @property
    def name(self) -> str:
        return f"{self.channel_type.value}_adapter"

    @abstractmethod
    def validate_or_sanitize(self, raw_name: str) -> str:
        """
        Normalize user input into the canonical ``ext_id``.

        Raises:
            ValidationError: if the input cannot identify a channel
        """

    @abstractmethod
    async def search(self, query: str) -> list[ChannelInfo]:
        """
        Look the channel up at the provider.

        Raises:
            SearchError: with the kind describing the failure
        """

    @abstractmethod
    async def fetch_updates(
        self, ext_id: str, last_known: Update | None = None
    ) -> list[RawUpdate]:
        """
        Return all items the provider currently reports for ``ext_id``.

        Raises:
            FetchError: on network, status or parse failures
        """


def search_error_from_http(err: HTTPClientError, what: str) -> SearchError:
    """Map an HTTP failure during search to a search error kind."""
    if isinstance(err, HTTPTimeoutError):
        return SearchError(SearchErrorKind.TIMEOUT, f"{what}: {err}")
    if err.is_not_found:
        return SearchError(SearchErrorKind.CHANNEL_NOT_FOUND, f"{what} not found")
    return SearchError(SearchErrorKind.TECHNICAL_ERROR, f"{what}: {err}")


def clean_text(text: str) -> str:
    """Collapse whitespace and strip control characters."""
    text = " ".join(text.split())
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
    return text.strip()


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` at a word boundary so the result fits ``limit`` chars."""
    if len(text) <= limit:
        return text
    cut = text[: limit - 1].rsplit(" ", 1)[0] or text[: limit - 1]
    return cut + "…"
