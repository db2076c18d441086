"""Tests for the per-retailer crawler and the registry."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from shelfwatch.crawler.crawler import Crawler
from shelfwatch.crawler.dtos import ProductDetails, ProductListingUrl
from shelfwatch.crawler.http_client import TransientFetchError
from shelfwatch.crawler.registry import RetailerRegistry


class StaticFetcher:
    """Fetcher returning fixed HTML per URL."""

    def __init__(self, pages):
        self.pages = pages
        self.requests = []

    async def fetch_html(self, url, options=None):
        self.requests.append((url, options))
        return self.pages[url]

    def get_last_status_code(self):
        return 200


def _extractor(handles, records):
    extractor = MagicMock()
    extractor.can_handle.return_value = handles
    extractor.extract.return_value = iter(records)
    return extractor


@pytest.mark.asyncio
async def test_every_matching_extractor_runs_on_one_fetch():
    url = "https://shop.example.com/product/1"
    fetcher = StaticFetcher({url: "<html></html>"})
    details = ProductDetails(title="Chews", price_pence=100)
    review = object()
    skipped = _extractor(False, [ProductListingUrl(url="x", retailer="example")])

    crawler = Crawler(
        "Example",
        "example",
        fetcher,
        extractors=[_extractor(True, [details]), skipped, _extractor(True, [review])],
        request_delay_ms=0,
    )
    records = [record async for record in crawler.crawl(url)]

    assert records == [details, review]
    assert len(fetcher.requests) == 1
    skipped.extract.assert_not_called()


@pytest.mark.asyncio
async def test_fetch_failures_propagate():
    fetcher = MagicMock()
    fetcher.fetch_html = AsyncMock(side_effect=TransientFetchError("boom"))
    crawler = Crawler("Example", "example", fetcher, request_delay_ms=0)

    with pytest.raises(TransientFetchError):
        async for _ in crawler.crawl("https://shop.example.com/"):
            pass


@pytest.mark.asyncio
async def test_retailer_headers_are_sent():
    url = "https://www.tesco.com/groceries/en-GB/products/123"
    fetcher = StaticFetcher({url: ""})
    crawler = RetailerRegistry.build_crawler("tesco", fetcher)

    records = [record async for record in crawler.crawl(url)]

    assert len(records) == 1
    options = fetcher.requests[0][1]
    assert options["headers"]["Accept-Language"] == "en-GB,en;q=0.9"
    assert crawler.request_delay_ms == 1500


def test_registry_lookup():
    assert set(RetailerRegistry.get_supported_retailers()) >= {"tesco", "asda", "bm", "pets-at-home"}
    assert RetailerRegistry.get("bm").name == "B&M"
    assert RetailerRegistry.is_supported("asda")
    with pytest.raises(ValueError):
        RetailerRegistry.get("unknown")
