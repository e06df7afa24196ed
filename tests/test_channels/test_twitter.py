"""Tests for the Twitter adapter."""

from datetime import datetime, timezone

import httpx
import pytest
import respx

from digester.channels.errors import FetchError, SearchError, SearchErrorKind, ValidationError
from digester.channels.twitter import (
    TWEETS_LOOKUP,
    TWITTER_API_BASE,
    USER_BY_NAME,
    TwitterAdapter,
    parse_screen_name,
)

USER = {"data": {"id": "2244994945", "name": "Rust Language", "username": "rustlang"}}


@pytest.fixture
def adapter(fast_client) -> TwitterAdapter:
    return TwitterAdapter(bearer_token="token", http_client_factory=fast_client)


class TestParseScreenName:
    """Tests for screen name normalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("rustlang", "rustlang"),
            ("@rustlang", "rustlang"),
            ("https://twitter.com/rustlang", "rustlang"),
            ("twitter.com/rustlang/status/123", "rustlang"),
            ("https://x.com/rust_lang?lang=en", "rust_lang"),
        ],
    )
    def test_accepts(self, raw: str, expected: str) -> None:
        assert parse_screen_name(raw) == expected

    @pytest.mark.parametrize("raw", ["", "@", "way_too_long_screen_name", "bad-name"])
    def test_rejects(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            parse_screen_name(raw)


class TestSearch:
    """Tests for account lookup."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_found(self, adapter: TwitterAdapter) -> None:
        route = respx.get(f"{USER_BY_NAME}/rustlang").mock(
            return_value=httpx.Response(200, json=USER)
        )

        found = await adapter.search("@rustlang")

        assert len(found) == 1
        assert found[0].name == "Rust Language"
        assert found[0].ext_id == "rustlang"
        assert found[0].link == "https://twitter.com/rustlang"
        assert route.calls.last.request.headers["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    @respx.mock
    async def test_unknown_user_in_errors_payload(self, adapter: TwitterAdapter) -> None:
        respx.get(f"{USER_BY_NAME}/ghost").mock(
            return_value=httpx.Response(
                200, json={"errors": [{"title": "Not Found Error"}]}
            )
        )

        with pytest.raises(SearchError) as exc_info:
            await adapter.search("ghost")

        assert exc_info.value.kind == SearchErrorKind.CHANNEL_NOT_FOUND


class TestFetchUpdates:
    """Tests for timeline fetching."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_maps_tweets(self, adapter: TwitterAdapter) -> None:
        respx.get(f"{USER_BY_NAME}/rustlang").mock(
            return_value=httpx.Response(200, json=USER)
        )
        long_text = "Rust 1.41 is out!   " + "word " * 40
        timeline = respx.get(f"{TWITTER_API_BASE}/users/2244994945/tweets").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "id": "1222",
                            "text": long_text,
                            "created_at": "2020-01-30T15:00:00.000Z",
                        },
                        {"id": "1221", "text": "short", "created_at": "2020-01-29T15:00:00.000Z"},
                    ]
                },
            )
        )

        updates = await adapter.fetch_updates("rustlang")

        assert len(updates) == 2
        assert updates[0].ext_id == "1222"
        assert updates[0].url == "https://twitter.com/rustlang/status/1222"
        assert updates[0].published == datetime(2020, 1, 30, 15, 0, tzinfo=timezone.utc)
        assert len(updates[0].title) <= 140
        assert updates[0].title.startswith("Rust 1.41 is out! word")
        assert updates[0].title.endswith("…")
        assert updates[1].title == "short"

        params = timeline.calls.last.request.url.params
        assert params["exclude"] == "retweets,replies"

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_timeline(self, adapter: TwitterAdapter) -> None:
        respx.get(f"{USER_BY_NAME}/rustlang").mock(
            return_value=httpx.Response(200, json=USER)
        )
        respx.get(f"{TWITTER_API_BASE}/users/2244994945/tweets").mock(
            return_value=httpx.Response(200, json={"meta": {"result_count": 0}})
        )

        assert await adapter.fetch_updates("rustlang") == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_failure_raises_fetch_error(self, adapter: TwitterAdapter) -> None:
        respx.get(f"{USER_BY_NAME}/rustlang").mock(return_value=httpx.Response(401))

        with pytest.raises(FetchError):
            await adapter.fetch_updates("rustlang")


class TestFindDeleted:
    """Tests for deletion lookup."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_missing_ids(self, adapter: TwitterAdapter) -> None:
        route = respx.get(TWEETS_LOOKUP).mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [{"id": "1", "text": "still here"}],
                    "errors": [{"value": "2"}, {"value": "3"}],
                },
            )
        )

        deleted = await adapter.find_deleted(["1", "2", "3"])

        assert deleted == ["2", "3"]
        assert route.calls.last.request.url.params["ids"] == "1,2,3"

    @pytest.mark.asyncio
    async def test_rejects_more_than_100_ids(self, adapter: TwitterAdapter) -> None:
        with pytest.raises(ValueError):
            await adapter.find_deleted([str(i) for i in range(101)])

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_input_makes_no_request(self, adapter: TwitterAdapter) -> None:
        route = respx.get(TWEETS_LOOKUP)

        assert await adapter.find_deleted([]) == []
        assert not route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_lookup_failure(self, adapter: TwitterAdapter) -> None:
        respx.get(TWEETS_LOOKUP).mock(return_value=httpx.Response(503))

        with pytest.raises(FetchError):
            await adapter.find_deleted(["1"])
