"""
HTTP layer shared by the channel adapters.

Provides:
- RetryConfig: exponential backoff with jitter
- HTTPClient: async GET with retry on 429/5xx and transport errors

Keeps retry and backoff concerns out of the adapters, which only map
the resulting exceptions to their own error kinds.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

from digester.config.settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:72.0) Gecko/20100101 Firefox/72.0"
)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """
    Exponential backoff configuration.

    Formula: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 3
    max_backoff_seconds: float = 60.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        settings = get_settings()
        return cls(
            max_retries=settings.max_http_retries,
            max_backoff_seconds=settings.max_backoff_seconds,
        )

    def calculate_backoff(self, attempt: int) -> float:
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()


class HTTPClientError(Exception):
    """Request failed with a non-success status or after retries."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    @property
    def is_not_found(self) -> bool:
        return self.status_code in (404, 410)


class HTTPTimeoutError(HTTPClientError):
    """The provider did not answer in time, retries included."""


class HTTPClient:
    """
    Async HTTP client with retry logic.

    Example:
        async with HTTPClient(timeout=10.0) as client:
            response = await client.get("https://example.com/feed.xml")
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.timeout = timeout or get_settings().external_timeout_seconds
        self._headers = {"User-Agent": DEFAULT_USER_AGENT}
        self._headers.update(headers or {})
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Perform a GET request, retrying transient failures.

        Raises:
            HTTPClientError: on non-retryable status or exhausted retries
            HTTPTimeoutError: when the last attempt timed out
        """
        if not self._client:
            raise RuntimeError("HTTPClient must be used as async context manager")

        attempts = self.retry_config.max_retries + 1
        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            try:
                response = await self._client.get(url, params=params, headers=headers)
            except httpx.TimeoutException as e:
                if is_last:
                    raise HTTPTimeoutError(
                        f"Request to {url} timed out after {attempts} attempts"
                    ) from e
                await self._backoff(url, attempt, type(e).__name__)
                continue
            except (httpx.ConnectError, httpx.ReadError) as e:
                if is_last:
                    raise HTTPClientError(
                        f"Request to {url} failed after {attempts} attempts: {e}"
                    ) from e
                await self._backoff(url, attempt, type(e).__name__)
                continue

            if response.status_code in RETRYABLE_STATUS and not is_last:
                await self._backoff(url, attempt, f"status {response.status_code}")
                continue

            if response.status_code >= 400:
                raise HTTPClientError(
                    f"Request to {url} failed with status {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text,
                )

            return response

        # Loop always returns or raises
        raise HTTPClientError(f"Request to {url} failed")

    async def _backoff(self, url: str, attempt: int, reason: str) -> None:
        delay = self.retry_config.calculate_backoff(attempt)
        logger.warning(
            "Retrying %s after %s (attempt %d/%d), backing off %.2fs",
            url,
            reason,
            attempt + 1,
            self.retry_config.max_retries + 1,
            delay,
        )
        await asyncio.sleep(delay)
