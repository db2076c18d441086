"""Tests for status-aware HTML fetching."""

import httpx
import pytest

from shelfwatch.crawler.http_client import (
    BlockedError,
    HttpFetcher,
    PermanentURLError,
    RateLimitedError,
    TransientFetchError,
)

URL = "https://shop.example.com/product/1"


def fetcher_for(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpFetcher(client=client, timeout=5)


@pytest.mark.asyncio
async def test_success_returns_text_and_merges_headers():
    seen = {}

    def handler(request):
        seen.update(request.headers)
        return httpx.Response(200, text="<html>ok</html>")

    fetcher = fetcher_for(handler)
    html = await fetcher.fetch_html(URL, {"headers": {"X-Test": "1"}})

    assert html == "<html>ok</html>"
    assert fetcher.get_last_status_code() == 200
    assert seen["x-test"] == "1"
    assert "user-agent" in seen


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error",
    [
        (401, BlockedError),
        (403, BlockedError),
        (404, PermanentURLError),
        (410, PermanentURLError),
        (500, TransientFetchError),
        (503, TransientFetchError),
        (302, TransientFetchError),
    ],
)
async def test_status_classification(status, error):
    fetcher = fetcher_for(lambda request: httpx.Response(status))
    with pytest.raises(error):
        await fetcher.fetch_html(URL)
    assert fetcher.get_last_status_code() == status


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    fetcher = fetcher_for(lambda request: httpx.Response(429, headers={"Retry-After": "30"}))
    with pytest.raises(RateLimitedError) as exc_info:
        await fetcher.fetch_html(URL)
    assert exc_info.value.retry_after == 30

    fetcher = fetcher_for(lambda request: httpx.Response(429, headers={"Retry-After": "soon"}))
    with pytest.raises(RateLimitedError) as exc_info:
        await fetcher.fetch_html(URL)
    assert exc_info.value.retry_after is None


@pytest.mark.asyncio
async def test_blocked_redirect():
    def handler(request):
        if request.url.path == "/blocked":
            return httpx.Response(200, text="blocked")
        return httpx.Response(302, headers={"Location": "https://shop.example.com/blocked"})

    fetcher = fetcher_for(handler)
    with pytest.raises(BlockedError):
        await fetcher.fetch_html(URL)


@pytest.mark.asyncio
async def test_transport_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    fetcher = fetcher_for(handler)
    with pytest.raises(TransientFetchError):
        await fetcher.fetch_html(URL)
    assert fetcher.get_last_status_code() is None
