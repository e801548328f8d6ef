"""Content fetcher for product pages.

Retrieves raw HTML with browser-like headers, a rotated user agent and a
fixed request timeout.

Retry policy:
- Retryable: no response at all (timeout, connection error) or HTTP 5xx / 429
- Terminal: any other 4xx, too many redirects
- Delay before retry i (1-based) is retry_delay * backoff ** (i - 1)
- Any 2xx-3xx response body counts as success (redirects are followed first)

Sleeps go through an injectable coroutine so concurrent fetches never block
each other and tests can record delays instead of waiting.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pricewatch.services.sites import SiteRegistry

logger = logging.getLogger("uvicorn.error")

SleepFn = Callable[[float], Awaitable[None]]

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Cache-Control": "max-age=0",
}


class FetchError(Exception):
    """Raised when a page cannot be retrieved within the retry budget."""

    def __init__(
        self,
        url: str,
        message: str,
        *,
        attempts: int = 0,
        status_code: int | None = None,
    ):
        super().__init__(f"Failed to fetch {url} after {attempts} attempt(s): {message}")
        self.url = url
        self.attempts = attempts
        self.status_code = status_code


def is_retryable_error(exc: BaseException) -> bool:
    """Classify a fetch failure as worth retrying."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    # No response received (timeouts, resets, DNS)
    return isinstance(exc, httpx.TransportError)


class ContentFetcher:
    """HTTP client for product pages with retry/backoff and identity rotation."""

    def __init__(
        self,
        registry: SiteRegistry,
        *,
        timeout: float = 15.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        max_redirects: int = 5,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.registry = registry
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_redirects = max_redirects
        self._transport = transport
        self._sleep = sleep
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def build_headers(self) -> dict[str, str]:
        """Browser-like request headers with a freshly rotated user agent."""
        return {"User-Agent": self.registry.random_user_agent(), **BASE_HEADERS}

    async def _get(self, url: str) -> str:
        client = await self._get_client()
        response = await client.get(url, headers=self.build_headers())
        if not 200 <= response.status_code < 400:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code} for {url}",
                request=response.request,
                response=response,
            )
        return response.text

    async def fetch_html(
        self,
        url: str,
        *,
        retries: int | None = None,
        retry_delay: float | None = None,
    ) -> str:
        """Fetch a page body.

        Args:
            url: Absolute http(s) URL.
            retries: Total attempts (default: configured max_retries).
            retry_delay: Base delay in seconds before the first retry.

        Returns:
            Response body as text.

        Raises:
            FetchError: Terminal HTTP error or retry budget exhausted.
        """
        retries = self.max_retries if retries is None else retries
        retry_delay = self.retry_delay if retry_delay is None else retry_delay
        if retries < 1:
            raise ValueError("retries must be >= 1")

        attempts = 0

        async def _attempt() -> str:
            nonlocal attempts
            attempts += 1
            return await self._get(url)

        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                f"[fetcher] attempt {state.attempt_number}/{retries} failed for {url}: "
                f"{exc!r}; retrying in {delay:.2f}s"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries),
            wait=wait_exponential(multiplier=retry_delay, exp_base=self.backoff_multiplier, min=0),
            retry=retry_if_exception(is_retryable_error),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            return await retrying(_attempt)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise FetchError(url, f"HTTP {status}", attempts=attempts, status_code=status) from e
        except httpx.HTTPError as e:
            raise FetchError(url, str(e) or e.__class__.__name__, attempts=attempts) from e
