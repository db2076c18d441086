"""Background tasks for retailer crawling."""

import asyncio
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfwatch import metrics
from shelfwatch.config import settings
from shelfwatch.crawler.crawler import HtmlFetcher
from shelfwatch.crawler.dtos import ProductDetails, ProductListingUrl, ProductReview
from shelfwatch.crawler.http_client import HttpFetcher
from shelfwatch.crawler.registry import RetailerRegistry
from shelfwatch.db.repositories import SqlPriceAlertRepository, SqlRetailerRepository
from shelfwatch.db.session import AsyncSessionLocal
from shelfwatch.events.store import EventDispatcher, SqlEventStore
from shelfwatch.notify.discord import DiscordWebhookSink
from shelfwatch.notify.sinks import FanoutSink, LoggingSink, NotificationSink
from shelfwatch.pricing.history import PriceHistoryRecorder, upsert_listing
from shelfwatch.reliability.kv_store import KeyValueStore, RedisKeyValueStore
from shelfwatch.reliability.reactors.circuit_breaker import CircuitBreakerReactor
from shelfwatch.reliability.reactors.crawl_failures import CrawlFailureAlertReactor
from shelfwatch.reliability.reactors.price_drop import PriceDropReactor
from shelfwatch.reliability.reactors.retailer_health import RetailerHealthReactor
from shelfwatch.worker.jobs import CrawlListingsJob

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Runner for background crawl tasks.

    Owns the shared collaborators: event store with its reactors, key-value
    store, HTTP fetcher and notification sinks.
    """

    def __init__(self):
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self.kv_store: Optional[KeyValueStore] = None
        self.fetcher: Optional[HtmlFetcher] = None
        self.sink: Optional[NotificationSink] = None
        self.events: Optional[SqlEventStore] = None
        self.retailers: Optional[SqlRetailerRepository] = None
        self.circuit_breaker: Optional[CircuitBreakerReactor] = None
        self.price_history: Optional[PriceHistoryRecorder] = None

    async def initialize(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        kv_store: Optional[KeyValueStore] = None,
        fetcher: Optional[HtmlFetcher] = None,
        sink: Optional[NotificationSink] = None,
    ):
        """Initialize task runner."""
        self.session_factory = session_factory or AsyncSessionLocal
        self.kv_store = kv_store or RedisKeyValueStore(settings.redis_url)
        self.fetcher = fetcher or HttpFetcher()
        if sink is None:
            sinks: List[NotificationSink] = [LoggingSink()]
            if settings.discord_webhook_url:
                sinks.append(DiscordWebhookSink(settings.discord_webhook_url))
            sink = FanoutSink(sinks)
        self.sink = sink

        dispatcher = EventDispatcher()
        self.events = SqlEventStore(self.session_factory, dispatcher)
        self.retailers = SqlRetailerRepository(self.session_factory)

        self.circuit_breaker = CircuitBreakerReactor(self.kv_store, self.events, self.retailers)
        dispatcher.subscribe(self.circuit_breaker)
        dispatcher.subscribe(RetailerHealthReactor(self.kv_store, self.events, self.retailers))
        dispatcher.subscribe(CrawlFailureAlertReactor(self.kv_store, self.events, self.sink))
        dispatcher.subscribe(
            PriceDropReactor(
                self.kv_store,
                self.events,
                SqlPriceAlertRepository(self.session_factory),
                self.sink,
                user_sink=DiscordWebhookSink(),
            )
        )

        self.price_history = PriceHistoryRecorder(self.session_factory, self.events)
        logger.info("Task runner initialized")

    async def close(self):
        """Clean up resources."""
        for resource in (self.fetcher, self.kv_store):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()

    def listings_job(self, url: str, retailer_slug: str) -> CrawlListingsJob:
        return CrawlListingsJob(
            url,
            retailer_slug,
            events=self.events,
            retailers=self.retailers,
            circuit=self.circuit_breaker,
            fetcher=self.fetcher,
        )

    async def crawl_listings(
        self, url: str, retailer_slug: str, max_pages: Optional[int] = None
    ) -> List[ProductListingUrl]:
        """
        Crawl a listing URL and follow its pagination.

        Args:
            url: First listing page
            retailer_slug: Retailer slug
            max_pages: Page limit (defaults to settings)

        Returns:
            Every listing discovered across the followed pages
        """
        max_pages = max_pages or settings.crawl_max_pages
        discovered: List[ProductListingUrl] = []
        seen_pages = {url}
        page_url: Optional[str] = url

        for _ in range(max_pages):
            result = await self.listings_job(page_url, retailer_slug).handle()
            if result.skipped:
                break
            discovered.extend(result.listings)

            page_url = None
            for next_page in result.next_pages:
                if next_page.url not in seen_pages:
                    seen_pages.add(next_page.url)
                    page_url = next_page.url
                    break
            if page_url is None:
                break

        return discovered

    async def crawl_product(self, retailer_slug: str, url: str) -> Optional[ProductDetails]:
        """Crawl a product page and record its price."""
        if await self.circuit_breaker.is_open(retailer_slug):
            logger.info(f"Skipping product {url}: circuit breaker open for {retailer_slug}")
            return None

        crawler = RetailerRegistry.build_crawler(retailer_slug, self.fetcher)
        details: Optional[ProductDetails] = None
        reviews = 0
        async for record in crawler.crawl(url):
            if isinstance(record, ProductDetails) and details is None:
                details = record
            elif isinstance(record, ProductReview):
                reviews += 1

        if details is None:
            logger.info(f"No product details extracted from {url}")
            return None

        async with self.session_factory() as db:
            listing = await upsert_listing(db, retailer_slug, url)
            listing_id = listing.id
            await db.commit()

        await self.price_history.record(listing_id, details)
        logger.debug(f"Recorded {url}: {details.price_pence}p, {reviews} reviews on page")
        return details

    async def crawl_retailer(self, retailer_slug: str) -> int:
        """Crawl every starting URL of a retailer and the products found."""
        definition = RetailerRegistry.get(retailer_slug)
        crawled = 0

        for start_url in definition.starting_urls:
            try:
                listings = await self.crawl_listings(start_url, retailer_slug)
            except Exception as e:
                logger.error(f"Listing crawl of {start_url} failed: {e}")
                continue

            for listing in listings:
                try:
                    if await self.crawl_product(retailer_slug, listing.url):
                        crawled += 1
                except Exception as e:
                    logger.error(f"Product crawl of {listing.url} failed: {e}")
                delay_ms = settings.retailer_request_delay_ms(retailer_slug)
                if delay_ms:
                    await asyncio.sleep(delay_ms / 1000)

        logger.info(f"Crawled {crawled} products for {retailer_slug}")
        return crawled

    async def crawl_all_retailers(self):
        """Crawl every registered retailer (scheduled trigger)."""
        success = True
        for slug in RetailerRegistry.get_supported_retailers():
            try:
                await self.crawl_retailer(slug)
            except Exception as e:
                success = False
                logger.error(f"Crawl of retailer {slug} failed: {e}")
        metrics.record_scheduler_run("crawl_all_retailers", success)


# Global task runner instance
task_runner = TaskRunner()
