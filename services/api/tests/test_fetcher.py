import httpx
import pytest

from pricewatch.services.fetcher import ContentFetcher, FetchError, is_retryable_error

URL = "https://shop.example/item/1"


class FlakyHandler:
    """Serves a fixed sequence of responses (or exceptions), then repeats the last one."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        status_code, body = outcome
        return httpx.Response(status_code, text=body)


def _fetcher(registry, handler, sleep, **kwargs) -> ContentFetcher:
    return ContentFetcher(registry, transport=httpx.MockTransport(handler), sleep=sleep, **kwargs)


@pytest.mark.asyncio
async def test_always_503_makes_n_attempts_with_exponential_delays(registry, sleep_recorder):
    handler = FlakyHandler((503, "busy"))
    fetcher = _fetcher(registry, handler, sleep_recorder, max_retries=4, retry_delay=1.0, backoff_multiplier=2.0)

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_html(URL)

    assert len(handler.requests) == 4
    assert sleep_recorder.delays == [1.0, 2.0, 4.0]
    assert exc_info.value.attempts == 4
    assert exc_info.value.status_code == 503
    await fetcher.close()


@pytest.mark.asyncio
async def test_delays_follow_configured_base_and_factor(registry, sleep_recorder):
    handler = FlakyHandler((500, "err"))
    fetcher = _fetcher(registry, handler, sleep_recorder, max_retries=3, backoff_multiplier=3.0)

    with pytest.raises(FetchError):
        await fetcher.fetch_html(URL, retry_delay=0.5)

    assert sleep_recorder.delays == [0.5, 1.5]
    await fetcher.close()


@pytest.mark.asyncio
async def test_retries_then_succeeds(registry, sleep_recorder):
    handler = FlakyHandler(
        httpx.ConnectTimeout("timed out"),
        (429, "slow down"),
        (200, "<html>ok</html>"),
    )
    fetcher = _fetcher(registry, handler, sleep_recorder, max_retries=3, retry_delay=1.0)

    assert await fetcher.fetch_html(URL) == "<html>ok</html>"
    assert len(handler.requests) == 3
    assert sleep_recorder.delays == [1.0, 2.0]
    await fetcher.close()


@pytest.mark.asyncio
async def test_terminal_4xx_is_not_retried(registry, sleep_recorder):
    handler = FlakyHandler((404, "missing"))
    fetcher = _fetcher(registry, handler, sleep_recorder, max_retries=5)

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_html(URL)

    assert len(handler.requests) == 1
    assert sleep_recorder.delays == []
    assert exc_info.value.status_code == 404
    assert exc_info.value.attempts == 1
    await fetcher.close()


@pytest.mark.asyncio
async def test_network_errors_exhaust_budget(registry, sleep_recorder):
    handler = FlakyHandler(httpx.ConnectError("refused"))
    fetcher = _fetcher(registry, handler, sleep_recorder, max_retries=2, retry_delay=0.25)

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_html(URL)

    assert len(handler.requests) == 2
    assert sleep_recorder.delays == [0.25]
    assert exc_info.value.status_code is None
    await fetcher.close()


@pytest.mark.asyncio
async def test_redirects_are_followed(registry, sleep_recorder):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://shop.example/new"})
        return httpx.Response(200, text="moved here")

    fetcher = _fetcher(registry, handler, sleep_recorder)
    assert await fetcher.fetch_html("https://shop.example/old") == "moved here"
    await fetcher.close()


@pytest.mark.asyncio
async def test_sends_browser_headers_with_pooled_user_agent(registry, sleep_recorder):
    handler = FlakyHandler((200, "ok"))
    fetcher = _fetcher(registry, handler, sleep_recorder)

    await fetcher.fetch_html(URL)

    headers = handler.requests[0].headers
    assert headers["user-agent"] in registry.table.user_agents
    assert headers["accept"].startswith("text/html")
    assert headers["accept-language"] == "en-US,en;q=0.5"
    await fetcher.close()


@pytest.mark.asyncio
async def test_zero_retries_rejected(registry, sleep_recorder):
    fetcher = _fetcher(registry, FlakyHandler((200, "ok")), sleep_recorder)
    with pytest.raises(ValueError):
        await fetcher.fetch_html(URL, retries=0)
    await fetcher.close()


def test_retry_classification():
    request = httpx.Request("GET", URL)

    def status_error(code: int) -> httpx.HTTPStatusError:
        return httpx.HTTPStatusError("x", request=request, response=httpx.Response(code, request=request))

    assert is_retryable_error(status_error(500))
    assert is_retryable_error(status_error(503))
    assert is_retryable_error(status_error(429))
    assert not is_retryable_error(status_error(403))
    assert not is_retryable_error(status_error(404))
    assert is_retryable_error(httpx.ReadTimeout("slow", request=request))
    assert not is_retryable_error(httpx.TooManyRedirects("loop", request=request))
