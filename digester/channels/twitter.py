"""
Twitter API v2 adapter.

A channel is a Twitter account identified by its screen name. Tweets
carry their id as ``ext_id`` so the cleaner can later ask the API
which of them were deleted at the source.

Rate Limits (app auth):
    - user lookup: 300 requests per 15 minutes
    - tweet lookup: 100 ids per request
"""

import logging
import re
from datetime import datetime
from typing import Any

from digester.channels.base import (
    ChannelAdapter,
    clean_text,
    search_error_from_http,
    truncate,
)
from digester.channels.errors import (
    FetchError,
    SearchError,
    SearchErrorKind,
    ValidationError,
)
from digester.channels.http_client import HTTPClient, HTTPClientError
from digester.channels.schemas import ChannelInfo, ChannelType, RawUpdate, Update
from digester.config.settings import get_settings

logger = logging.getLogger(__name__)

TWITTER_API_BASE = "https://api.twitter.com/2"
USER_BY_NAME = f"{TWITTER_API_BASE}/users/by/username"
TWEETS_LOOKUP = f"{TWITTER_API_BASE}/tweets"

MAX_LOOKUP_IDS = 100
TITLE_LIMIT = 140

_SCREEN_NAME = re.compile(r"^[A-Za-z0-9_]{1,15}$")
_URL_PREFIX = re.compile(
    r"^(?:https?://)?(?:www\.|mobile\.)?(?:twitter\.com|x\.com)/", re.IGNORECASE
)


def parse_screen_name(raw: str) -> str:
    """Strip ``@`` and profile URL prefixes from a screen name."""
    name = _URL_PREFIX.sub("", raw.strip())
    name = name.split("/", 1)[0].split("?", 1)[0].lstrip("@")
    if not _SCREEN_NAME.match(name):
        raise ValidationError(f"invalid screen name '{raw}'")
    return name


class TwitterAdapter(ChannelAdapter):
    """
    Adapter for Twitter API v2 with app-only bearer authentication.

    Retweets and replies are excluded from fetched timelines.
    """

    def __init__(
        self,
        bearer_token: str | None = None,
        rate_limit: int = 30,
        http_client_factory=HTTPClient,
    ):
        super().__init__(rate_limit=rate_limit)
        self._bearer_token = bearer_token or get_settings().twitter_bearer_token
        self._http_client_factory = http_client_factory

        if not self._bearer_token:
            logger.warning(
                "Twitter bearer token not configured. "
                "Adapter will not be able to fetch data."
            )

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.TWITTER

    def _client(self) -> HTTPClient:
        return self._http_client_factory(
            headers={"Authorization": f"Bearer {self._bearer_token}"}
        )

    def validate_or_sanitize(self, raw_name: str) -> str:
        return parse_screen_name(raw_name)

    async def _lookup_user(self, client: HTTPClient, screen_name: str) -> dict[str, Any]:
        await self._rate_limiter.acquire()
        response = await client.get(f"{USER_BY_NAME}/{screen_name}")
        data = response.json()
        # The API answers unknown users with 200 and an "errors" list
        if "data" not in data:
            raise HTTPClientError(
                f"User {screen_name} not found",
                status_code=404,
                response_body=response.text,
            )
        return data["data"]

    async def search(self, query: str) -> list[ChannelInfo]:
        try:
            screen_name = parse_screen_name(query)
        except ValidationError as e:
            raise SearchError(SearchErrorKind.INVALID_INPUT, str(e)) from e

        try:
            async with self._client() as client:
                user = await self._lookup_user(client, screen_name)
        except HTTPClientError as e:
            raise search_error_from_http(e, f"User {screen_name}") from e

        username = user.get("username", screen_name)
        return [
            ChannelInfo(
                name=user.get("name") or username,
                ext_id=username,
                link=f"https://twitter.com/{username}",
            )
        ]

    async def fetch_updates(
        self, ext_id: str, last_known: Update | None = None
    ) -> list[RawUpdate]:
        params: dict[str, Any] = {
            "max_results": 100,
            "exclude": "retweets,replies",
            "tweet.fields": "created_at",
        }

        try:
            async with self._client() as client:
                user = await self._lookup_user(client, ext_id)
                await self._rate_limiter.acquire()
                response = await client.get(
                    f"{TWITTER_API_BASE}/users/{user['id']}/tweets",
                    params=params,
                )
        except HTTPClientError as e:
            raise FetchError(f"Failed to fetch tweets of @{ext_id}: {e}") from e

        updates = []
        for tweet in response.json().get("data", []):
            update = self._to_update(ext_id, tweet)
            if update is not None:
                updates.append(update)
        return updates

    def _to_update(self, screen_name: str, tweet: dict[str, Any]) -> RawUpdate | None:
        text = clean_text(tweet.get("text", ""))
        created_at = tweet.get("created_at")
        if not text or not created_at:
            return None

        return RawUpdate(
            title=truncate(text, TITLE_LIMIT),
            url=f"https://twitter.com/{screen_name}/status/{tweet['id']}",
            published=datetime.fromisoformat(created_at.replace("Z", "+00:00")),
            ext_id=str(tweet["id"]),
        )

    async def find_deleted(self, ext_ids: list[str]) -> list[str]:
        """
        Return the tweet ids of ``ext_ids`` that no longer exist.

        One API round-trip; the endpoint accepts at most 100 ids.

        Raises:
            ValueError: if more than 100 ids are passed
            FetchError: if the lookup fails
        """
        if len(ext_ids) > MAX_LOOKUP_IDS:
            raise ValueError(
                f"At most {MAX_LOOKUP_IDS} ids per lookup, got {len(ext_ids)}"
            )
        if not ext_ids:
            return []

        await self._rate_limiter.acquire()
        try:
            async with self._client() as client:
                response = await client.get(
                    TWEETS_LOOKUP, params={"ids": ",".join(ext_ids)}
                )
        except HTTPClientError as e:
            raise FetchError(f"Tweet lookup failed: {e}") from e

        existing = {str(t["id"]) for t in response.json().get("data", [])}
        deleted = [i for i in ext_ids if i not in existing]
        logger.debug("%d of %d tweets deleted at source", len(deleted), len(ext_ids))
        return deleted
