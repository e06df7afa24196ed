"""
RSS and Atom feed adapter.

Channels are identified by the sanitized feed URL. Searching accepts
either a feed URL or a regular web page; for HTML pages the
``<link rel="alternate">`` feed references are followed exactly once.
"""

import calendar
import ipaddress
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urljoin, urlsplit

import feedparser
import httpx
from bs4 import BeautifulSoup

from digester.channels.base import ChannelAdapter, search_error_from_http
from digester.channels.errors import (
    FetchError,
    SearchError,
    SearchErrorKind,
    ValidationError,
)
from digester.channels.http_client import HTTPClient, HTTPClientError
from digester.channels.schemas import ChannelInfo, ChannelType, RawUpdate, Update

logger = logging.getLogger(__name__)

FEED_LINK_TYPES = ("application/rss+xml", "application/atom+xml")

_ALLOWED_SCHEMES = ("http", "https")

_DEFAULT_PORTS = {"http": 80, "https": 443}


def sanitize_url(raw: str) -> str:
    """
    Normalize a user supplied URL.

    Only http(s) on a domain name with a top level domain is accepted.
    Query strings, fragments and the scheme's default port are dropped so
    that equivalent inputs map to the same channel. Any other port is
    rejected.

    Raises:
        ValidationError: with a short reason
    """
    raw = raw.strip()
    if "'" in raw:
        raise ValidationError("Invalid character '")

    url = raw if "://" in raw else f"http://{raw}"

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise ValidationError(f"failed to parse url '{url}': {e}") from e

    scheme = parts.scheme.lower()
    if scheme not in _ALLOWED_SCHEMES:
        raise ValidationError(f"invalid scheme: {scheme}")

    if port is not None and port != _DEFAULT_PORTS[scheme]:
        raise ValidationError("cannot have port")

    host = parts.hostname
    if not host:
        raise ValidationError("missing host")

    try:
        ipaddress.ip_address(host)
    except ValueError:
        pass
    else:
        raise ValidationError("cannot be ip")

    labels = host.split(".")
    if len(labels) < 2 or len(labels[-1]) < 2:
        raise ValidationError("missing tld")

    return f"{scheme}://{host}{parts.path or '/'}"


def parse_pub_date(value: str) -> datetime:
    """
    Parse a feed date into an aware UTC datetime.

    Handles RFC 2822 with or without a zone (zone-less dates are UTC,
    e.g. ``Tue, 10 Dec 2019 16:00:00``) and ISO 8601 as used by Atom.

    Raises:
        ValueError: if the value matches no known format
    """
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        parsed = None

    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Failed to parse date '{value}'") from e

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _entry_published(entry: Any) -> datetime | None:
    # Atom feeds such as Wikipedia only carry "updated"
    for key in ("published", "updated"):
        value = entry.get(key)
        if value:
            try:
                return parse_pub_date(value)
            except ValueError:
                pass
        struct = entry.get(f"{key}_parsed")
        if struct:
            return datetime.fromtimestamp(calendar.timegm(struct), tz=timezone.utc)
    return None


def _entry_link(entry: Any) -> str | None:
    """Prefer rel=alternate; YouTube also lists the feed itself as rel=self."""
    found = None
    for link in entry.get("links", []):
        href = link.get("href")
        if not href:
            continue
        if link.get("rel") == "alternate" or found is None:
            found = href
    return found or entry.get("link")


def extract_feed_links(base_url: str, html: str) -> list[str]:
    """Return absolute URLs of all RSS/Atom ``<link>`` tags of a page."""
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    for tag in soup.find_all("link"):
        if tag.get("type") not in FEED_LINK_TYPES:
            continue
        href = tag.get("href")
        if not href:
            logger.debug("Feed link without href on %s", base_url)
            continue
        links.append(urljoin(base_url, href))
    return links


def _is_html(response: httpx.Response) -> bool:
    return "text/html" in response.headers.get("content-type", "")


class RssAdapter(ChannelAdapter):
    """
    Adapter for RSS 2.0 and Atom feeds.

    feedparser handles both formats, so no content-type sniffing is
    needed beyond telling HTML pages apart from feeds.
    """

    def __init__(self, rate_limit: int = 120, http_client_factory=HTTPClient):
        super().__init__(rate_limit=rate_limit)
        self._http_client_factory = http_client_factory

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.RSS_FEED

    def validate_or_sanitize(self, raw_name: str) -> str:
        return sanitize_url(raw_name)

    async def search(self, query: str) -> list[ChannelInfo]:
        try:
            url = sanitize_url(query)
        except ValidationError as e:
            raise SearchError(SearchErrorKind.INVALID_INPUT, str(e)) from e

        async with self._http_client_factory() as client:
            return await self._fetch_channel_info(client, url, recursed=False)

    async def _fetch_channel_info(
        self, client: HTTPClient, url: str, recursed: bool
    ) -> list[ChannelInfo]:
        await self._rate_limiter.acquire()
        try:
            response = await client.get(url)
        except HTTPClientError as e:
            # Any error status on a user supplied URL means there is no feed
            if e.status_code is not None and e.status_code < 500:
                raise SearchError(
                    SearchErrorKind.CHANNEL_NOT_FOUND,
                    f"Url {url} returned status {e.status_code}",
                ) from e
            raise search_error_from_http(e, url) from e

        if _is_html(response):
            # A page pointing to itself must not recurse forever
            if recursed:
                raise SearchError(
                    SearchErrorKind.TECHNICAL_ERROR,
                    f"Url {url} points to html, but we already recursed",
                )
            feeds: list[ChannelInfo] = []
            for link in extract_feed_links(str(response.url), response.text):
                for feed in await self._fetch_channel_info(client, link, recursed=True):
                    if any(feed.is_same_feed(f) for f in feeds):
                        logger.debug("Ignoring duplicate feed %s", feed.ext_id)
                        continue
                    feeds.append(feed)
            return feeds

        parsed = feedparser.parse(response.content)
        if not parsed.get("version"):
            raise SearchError(
                SearchErrorKind.TECHNICAL_ERROR,
                f"Neither atom nor rss: {url}",
            )

        meta = parsed.get("feed", {})
        return [
            ChannelInfo(
                name=meta.get("title", "") or url,
                ext_id=url,
                link=meta.get("link") or url,
            )
        ]

    async def fetch_updates(
        self, ext_id: str, last_known: Update | None = None
    ) -> list[RawUpdate]:
        await self._rate_limiter.acquire()
        try:
            async with self._http_client_factory() as client:
                response = await client.get(ext_id)
        except HTTPClientError as e:
            raise FetchError(f"Failed to fetch url '{ext_id}': {e}") from e

        parsed = feedparser.parse(response.content)
        if not parsed.get("version"):
            reason = parsed.get("bozo_exception", "unknown format")
            raise FetchError(f"Failed to parse '{ext_id}': {reason}")

        updates: list[RawUpdate] = []
        for entry in parsed.get("entries", []):
            update = self._to_update(entry)
            if update is None:
                logger.warning("Skipping incomplete entry in %s", ext_id)
                continue
            updates.append(update)

        logger.debug("Fetched %d entries from %s", len(updates), ext_id)
        return updates

    def _to_update(self, entry: Any) -> RawUpdate | None:
        title = (entry.get("title") or "").strip()
        url = _entry_link(entry)
        published = _entry_published(entry)
        if not title or not url or published is None:
            return None
        return RawUpdate(title=title, url=url, published=published)
