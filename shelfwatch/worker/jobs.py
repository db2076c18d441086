"""Crawl jobs: one logical crawl of one URL with timeout and retries."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Type

from shelfwatch import metrics
from shelfwatch.config import settings
from shelfwatch.crawler.crawler import Crawler, HtmlFetcher
from shelfwatch.crawler.dtos import PaginatedUrl, ProductListingUrl
from shelfwatch.crawler.http_client import PermanentURLError, RateLimitedError
from shelfwatch.crawler.registry import RetailerRegistry
from shelfwatch.db.repositories import RetailerRepository
from shelfwatch.events.aggregate import CrawlAggregate
from shelfwatch.events.store import EventStore
from shelfwatch.logging_config import get_logger

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class CrawlTimeoutError(RuntimeError):
    """A crawl attempt ran past its timeout."""


class CircuitState(Protocol):
    async def is_open(self, slug: str) -> bool: ...


@dataclass
class CrawlResult:
    """Outcome of a crawl job."""

    crawl_id: Optional[str] = None
    listings: List[ProductListingUrl] = field(default_factory=list)
    next_pages: List[PaginatedUrl] = field(default_factory=list)
    attempts: int = 0
    skip_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None


class CrawlListingsJob:
    """
    Crawl a listing page for a retailer and record what it discovers.

    One CrawlAggregate covers every attempt, so a crawl that exhausts its
    retries produces exactly one failure event. Listings found by a failed
    attempt are discarded; only the successful attempt's are recorded.
    """

    def __init__(
        self,
        url: str,
        retailer_slug: str,
        *,
        events: EventStore,
        retailers: RetailerRepository,
        circuit: CircuitState,
        fetcher: HtmlFetcher,
        registry: Type[RetailerRegistry] = RetailerRegistry,
        timeout: Optional[float] = None,
        tries: Optional[int] = None,
        backoff: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
        metadata: Optional[dict] = None,
    ):
        self.url = url
        self.retailer_slug = retailer_slug
        self.events = events
        self.retailers = retailers
        self.circuit = circuit
        self.fetcher = fetcher
        self.registry = registry
        self.timeout = timeout if timeout is not None else settings.crawl_job_timeout_seconds
        self.tries = max(1, tries if tries is not None else settings.crawl_job_tries)
        self.backoff = backoff if backoff is not None else settings.crawl_job_backoff_seconds
        self.sleep = sleep
        self.metadata = metadata or {}
        self.log = get_logger(__name__, retailer=retailer_slug, url=url)

    async def skip_reason(self) -> Optional[str]:
        """Why this retailer must not be crawled now, if anything."""
        if not self.registry.is_supported(self.retailer_slug):
            return "unknown retailer"

        record = await self.retailers.get(self.retailer_slug)
        if record is None:
            return "retailer not found"
        if not record.status.is_available_for_crawling():
            return f"retailer is {record.status.value}"
        if record.is_paused(datetime.now(timezone.utc).replace(tzinfo=None)):
            return f"retailer paused until {record.paused_until.isoformat()}"
        if await self.circuit.is_open(self.retailer_slug):
            return "circuit breaker open"
        return None

    async def handle(self) -> CrawlResult:
        """
        Run the job.

        Returns:
            CrawlResult with discovered listings and next pages

        Raises:
            The last attempt's exception once retries are exhausted
        """
        reason = await self.skip_reason()
        if reason:
            self.log.info(f"Skipping crawl of {self.url}: {reason}")
            metrics.record_crawl_outcome(self.retailer_slug, "skipped")
            return CrawlResult(skip_reason=reason)

        definition = self.registry.get(self.retailer_slug)
        crawler = definition.build_crawler(self.fetcher)

        aggregate = CrawlAggregate()
        aggregate.start_crawl(
            self.url,
            definition.name,
            metadata={**self.metadata, "job": "crawl_listings", "tries": self.tries},
            retailer_slug=definition.slug,
        )
        await aggregate.persist(self.events)

        started = time.monotonic()
        last_error: Optional[BaseException] = None
        records: List[Any] = []
        attempt = 0

        for attempt in range(1, self.tries + 1):
            attempt_started = time.monotonic()
            try:
                records = await self.attempt(crawler)
            except PermanentURLError as e:
                last_error = e
                metrics.record_crawl_attempt(self.retailer_slug, False, time.monotonic() - attempt_started)
                self.log.warning(f"Permanent failure crawling {self.url}, not retrying: {e}")
                break
            except Exception as e:
                last_error = e
                metrics.record_crawl_attempt(self.retailer_slug, False, time.monotonic() - attempt_started)
                self.log.warning(
                    f"Crawl attempt {attempt}/{self.tries} failed: {type(e).__name__}: {e}"
                )
                if attempt < self.tries:
                    await self.sleep(self.retry_delay(e))
            else:
                last_error = None
                metrics.record_crawl_attempt(self.retailer_slug, True, time.monotonic() - attempt_started)
                break

        if last_error is not None:
            aggregate.mark_as_failed(
                str(last_error) or type(last_error).__name__,
                {
                    "url": self.url,
                    "exception_class": type(last_error).__name__,
                    "attempts": attempt,
                },
            )
            await aggregate.persist(self.events)
            metrics.record_crawl_outcome(self.retailer_slug, "failed")
            self.log.error(f"Crawl of {self.url} failed after {attempt} attempt(s)")
            raise last_error

        listings = [r for r in records if isinstance(r, ProductListingUrl)]
        next_pages = [r for r in records if isinstance(r, PaginatedUrl)]
        for listing in listings:
            aggregate.record_product_listing_discovered(
                listing.url, definition.name, listing.category, listing.metadata
            )
        aggregate.complete_crawl(
            {
                "duration_seconds": round(time.monotonic() - started, 3),
                "discovered_count": len(listings),
                "next_pages": len(next_pages),
                "attempts": attempt,
            }
        )
        await aggregate.persist(self.events)

        metrics.record_listings_discovered(self.retailer_slug, len(listings))
        metrics.record_crawl_outcome(self.retailer_slug, "completed")
        self.log.info(f"Crawl of {self.url} discovered {len(listings)} listings")

        if listings and crawler.request_delay_ms:
            await self.sleep(crawler.request_delay_ms / 1000)

        return CrawlResult(
            crawl_id=aggregate.crawl_id,
            listings=listings,
            next_pages=next_pages,
            attempts=attempt,
        )

    async def attempt(self, crawler: Crawler) -> List[Any]:
        """Crawl once, buffering every record, within the timeout."""

        async def collect() -> List[Any]:
            return [record async for record in crawler.crawl(self.url)]

        try:
            return await asyncio.wait_for(collect(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise CrawlTimeoutError(f"Crawl of {self.url} exceeded {self.timeout}s") from e

    def retry_delay(self, error: BaseException) -> float:
        if isinstance(error, RateLimitedError) and error.retry_after:
            return max(self.backoff, float(error.retry_after))
        return self.backoff
