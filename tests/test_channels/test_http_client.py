"""Tests for HTTP client with retry logic."""

import httpx
import pytest
import respx

from digester.channels.http_client import (
    DEFAULT_USER_AGENT,
    HTTPClient,
    HTTPClientError,
    HTTPTimeoutError,
    RetryConfig,
)


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_values(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.max_backoff_seconds == 60.0
        assert config.base_delay == 1.0

    def test_backoff_grows_exponentially(self):
        config = RetryConfig(base_delay=1.0, jitter_factor=0.0)
        assert config.calculate_backoff(0) == 1.0
        assert config.calculate_backoff(1) == 2.0
        assert config.calculate_backoff(3) == 8.0

    def test_backoff_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_backoff_seconds=5.0, jitter_factor=0.0)
        assert config.calculate_backoff(10) == 5.0

    def test_jitter_stays_within_factor(self):
        config = RetryConfig(base_delay=1.0, jitter_factor=0.1)
        for _ in range(20):
            assert 1.0 <= config.calculate_backoff(0) <= 1.1


class TestHTTPClient:
    """Tests for HTTPClient."""

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        client = HTTPClient(retry_config=RetryConfig(max_retries=0))
        with pytest.raises(RuntimeError):
            await client.get("https://api.example.com/data")

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_success_sends_user_agent(self):
        route = respx.get("https://api.example.com/data").mock(
            return_value=httpx.Response(200, json={"result": "success"})
        )

        async with HTTPClient(retry_config=RetryConfig(max_retries=0)) as client:
            response = await client.get("https://api.example.com/data")

        assert response.json() == {"result": "success"}
        assert route.calls.last.request.headers["User-Agent"] == DEFAULT_USER_AGENT

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_on_503_then_success(self):
        call_count = 0

        def side_effect(request):
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json={"ok": True})

        respx.get("https://api.example.com/data").mock(side_effect=side_effect)
        config = RetryConfig(max_retries=3, base_delay=0.01, jitter_factor=0.0)

        async with HTTPClient(retry_config=config) as client:
            response = await client.get("https://api.example.com/data")

        assert response.status_code == 200
        assert call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_retry_on_404(self):
        route = respx.get("https://api.example.com/missing").mock(
            return_value=httpx.Response(404, text="Not found")
        )
        config = RetryConfig(max_retries=3, base_delay=0.01, jitter_factor=0.0)

        async with HTTPClient(retry_config=config) as client:
            with pytest.raises(HTTPClientError) as exc_info:
                await client.get("https://api.example.com/missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.is_not_found
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_exhausted_on_500(self):
        route = respx.get("https://api.example.com/data").mock(
            return_value=httpx.Response(500, text="error")
        )
        config = RetryConfig(max_retries=2, base_delay=0.01, jitter_factor=0.0)

        async with HTTPClient(retry_config=config) as client:
            with pytest.raises(HTTPClientError) as exc_info:
                await client.get("https://api.example.com/data")

        assert exc_info.value.status_code == 500
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_raises_timeout_error(self):
        respx.get("https://api.example.com/slow").mock(
            side_effect=httpx.ReadTimeout("slow")
        )
        config = RetryConfig(max_retries=1, base_delay=0.01, jitter_factor=0.0)

        async with HTTPClient(retry_config=config) as client:
            with pytest.raises(HTTPTimeoutError):
                await client.get("https://api.example.com/slow")

    @pytest.mark.asyncio
    @respx.mock
    async def test_connect_error_is_retried(self):
        call_count = 0

        def side_effect(request):
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise httpx.ConnectError("refused")
            return httpx.Response(200, text="ok")

        respx.get("https://api.example.com/data").mock(side_effect=side_effect)
        config = RetryConfig(max_retries=2, base_delay=0.01, jitter_factor=0.0)

        async with HTTPClient(retry_config=config) as client:
            response = await client.get("https://api.example.com/data")

        assert response.text == "ok"
        assert call_count == 2
