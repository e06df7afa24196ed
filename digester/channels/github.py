"""
GitHub releases adapter.

A channel is a repository identified by ``owner/repo``; its updates are
the published (non-draft) releases.
"""

import logging
import re
from datetime import datetime
from typing import Any

from digester.channels.base import ChannelAdapter, search_error_from_http
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

GITHUB_API_BASE = "https://api.github.com"

_URL_PREFIX = re.compile(r"^(?:https?://)?(?:www\.)?github\.com/", re.IGNORECASE)
_REPO_PATTERN = re.compile(r"^([A-Za-z0-9](?:[A-Za-z0-9-]{0,38}))/([A-Za-z0-9._-]{1,100})$")


def parse_repository(raw: str) -> str:
    """
    Reduce ``owner/repo`` or a github.com URL to ``owner/repo``.

    Extra path segments (``/releases``, ``/tree/main``) are ignored.
    """
    name = _URL_PREFIX.sub("", raw.strip())
    parts = [p for p in name.split("/") if p]
    if len(parts) < 2:
        raise ValidationError(f"expected owner/repo, got '{raw}'")

    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]

    full_name = f"{owner}/{repo}"
    if not _REPO_PATTERN.match(full_name) or repo in (".", ".."):
        raise ValidationError(f"invalid repository name '{full_name}'")
    return full_name


class GithubReleaseAdapter(ChannelAdapter):
    """
    Adapter for the GitHub REST API.

    Unauthenticated requests are limited to 60/hour by GitHub, so the
    registry only enables this adapter when a token is configured.
    """

    def __init__(
        self,
        api_token: str | None = None,
        rate_limit: int = 60,
        http_client_factory=HTTPClient,
    ):
        super().__init__(rate_limit=rate_limit)
        self._api_token = api_token or get_settings().github_api_token
        self._http_client_factory = http_client_factory

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.GITHUB_RELEASE

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    def validate_or_sanitize(self, raw_name: str) -> str:
        return parse_repository(raw_name)

    async def search(self, query: str) -> list[ChannelInfo]:
        try:
            full_name = parse_repository(query)
        except ValidationError as e:
            raise SearchError(SearchErrorKind.INVALID_INPUT, str(e)) from e

        await self._rate_limiter.acquire()
        try:
            async with self._http_client_factory(headers=self._headers()) as client:
                response = await client.get(f"{GITHUB_API_BASE}/repos/{full_name}")
        except HTTPClientError as e:
            raise search_error_from_http(e, f"Repository {full_name}") from e

        repo = response.json()
        return [
            ChannelInfo(
                name=repo.get("full_name", full_name),
                ext_id=repo.get("full_name", full_name),
                link=repo.get("html_url", f"https://github.com/{full_name}"),
            )
        ]

    async def fetch_updates(
        self, ext_id: str, last_known: Update | None = None
    ) -> list[RawUpdate]:
        await self._rate_limiter.acquire()
        try:
            async with self._http_client_factory(headers=self._headers()) as client:
                response = await client.get(
                    f"{GITHUB_API_BASE}/repos/{ext_id}/releases",
                    params={"per_page": 30},
                )
        except HTTPClientError as e:
            raise FetchError(f"Failed to fetch releases of {ext_id}: {e}") from e

        try:
            releases = response.json()
        except ValueError as e:
            raise FetchError(f"Invalid releases payload for {ext_id}: {e}") from e

        updates = []
        for release in releases:
            if release.get("draft"):
                continue
            update = self._to_update(release)
            if update is not None:
                updates.append(update)
        return updates

    def _to_update(self, release: dict[str, Any]) -> RawUpdate | None:
        title = (release.get("name") or "").strip() or release.get("tag_name")
        url = release.get("html_url")
        stamp = release.get("published_at") or release.get("created_at")
        if not title or not url or not stamp:
            logger.debug("Skipping release without title, url or date: %s", release.get("id"))
            return None

        return RawUpdate(
            title=title,
            url=url,
            published=datetime.fromisoformat(stamp.replace("Z", "+00:00")),
        )
