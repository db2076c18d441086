"""Per-retailer crawler: fetch once, run every matching extractor."""

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Protocol, Sequence

from shelfwatch.config import settings
from shelfwatch.crawler.extractors import Extractor
from shelfwatch.logging_config import get_logger

logger = logging.getLogger(__name__)


class HtmlFetcher(Protocol):
    """The HTML fetch collaborator a crawler depends on."""

    async def fetch_html(self, url: str, options: Optional[dict[str, Any]] = None) -> str:
        ...

    def get_last_status_code(self) -> Optional[int]:
        ...


@dataclass(frozen=True)
class RetailerDefinition:
    """Everything needed to crawl one retailer."""

    name: str
    slug: str
    base_url: str
    starting_urls: tuple[str, ...]
    extractors: tuple[Extractor, ...]
    request_delay_ms: Optional[int] = None

    def build_crawler(self, fetcher: "HtmlFetcher") -> "Crawler":
        return Crawler(
            retailer_name=self.name,
            retailer_slug=self.slug,
            fetcher=fetcher,
            extractors=self.extractors,
            starting_urls=self.starting_urls,
            request_delay_ms=self.request_delay_ms,
        )


class Crawler:
    """
    Crawls pages for one retailer.

    Every registered extractor whose ``can_handle`` accepts the URL runs
    against the same fetched HTML; more than one may fire for a page (for
    example details and reviews on a product page).
    """

    def __init__(
        self,
        retailer_name: str,
        retailer_slug: str,
        fetcher: HtmlFetcher,
        extractors: Sequence[Extractor] = (),
        starting_urls: Sequence[str] = (),
        request_delay_ms: Optional[int] = None,
        request_options: Optional[dict[str, Any]] = None,
    ):
        self.retailer_name = retailer_name
        self.retailer_slug = retailer_slug
        self.fetcher = fetcher
        self._extractors: list[Extractor] = list(extractors)
        self.starting_urls = list(starting_urls)
        self.request_delay_ms = (
            request_delay_ms
            if request_delay_ms is not None
            else settings.retailer_request_delay_ms(retailer_slug)
        )
        self._request_options = request_options or {}

    def add_extractor(self, extractor: Extractor) -> "Crawler":
        self._extractors.append(extractor)
        return self

    @property
    def extractors(self) -> list[Extractor]:
        return list(self._extractors)

    def request_options(self) -> dict[str, Any]:
        options = dict(self._request_options)
        headers = settings.retailer_headers(self.retailer_slug)
        headers.update(options.get("headers") or {})
        if headers:
            options["headers"] = headers
        return options

    async def crawl(self, url: str) -> AsyncIterator[Any]:
        """
        Fetch a page and yield every record its extractors produce.

        Fetch failures are not retried here; they propagate to the caller.

        Args:
            url: Page URL

        Yields:
            ProductDetails, ProductListingUrl, PaginatedUrl or ProductReview
        """
        log = get_logger(__name__, retailer=self.retailer_slug, url=url)
        log.info(f"Crawling {self.retailer_name} page {url}")

        try:
            html = await self.fetcher.fetch_html(url, self.request_options())
            log.debug(
                f"Fetched {url}: status_code={self.fetcher.get_last_status_code()}, "
                f"html_length={len(html)}"
            )

            for extractor in self._extractors:
                if not extractor.can_handle(url):
                    continue
                for record in extractor.extract(html, url):
                    yield record
        except Exception as e:
            log.error(f"Crawl of {url} failed: {type(e).__name__}: {e}")
            raise
