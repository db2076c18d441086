"""Tests for the task runner and scheduler wiring."""

import pytest
import pytest_asyncio
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from shelfwatch.config import settings
from shelfwatch.db.models import ListingPrice, Retailer
from shelfwatch.reliability.kv_store import InMemoryKeyValueStore
from shelfwatch.worker.scheduler import setup_scheduler
from shelfwatch.worker.tasks import TaskRunner

LISTING = "https://www.tesco.com/groceries/en-GB/shop/pets/dog-food-and-treats/all"
PRODUCT = "https://www.tesco.com/groceries/en-GB/products/111"


def product_page(price):
    return f"""
    <html><body>
      <h1 data-auto="pdp-product-title">Harringtons Complete Adult Dog Food 2kg</h1>
      <span data-auto="price-value">£{price}</span>
    </body></html>
    """


class PageFetcher:
    def __init__(self, pages):
        self.pages = pages
        self.fetched = []

    async def fetch_html(self, url, options=None):
        self.fetched.append(url)
        return self.pages[url]

    def get_last_status_code(self):
        return 200


@pytest_asyncio.fixture
async def runner(session_factory, sink, monkeypatch):
    monkeypatch.setitem(settings.retailer_crawl_settings, "tesco", {"request_delay_ms": 0})
    async with session_factory() as db:
        db.add(Retailer(slug="tesco", name="Tesco", base_url="https://www.tesco.com"))
        await db.commit()

    fetcher = PageFetcher(
        {
            LISTING: f'<a href="{PRODUCT}">A</a><a rel="next" href="{LISTING}?page=2">Next</a>',
            f"{LISTING}?page=2": '<a href="/groceries/en-GB/products/222">B</a>'
            f'<a rel="next" href="{LISTING}?page=2">Next</a>',
        }
    )
    task_runner = TaskRunner()
    await task_runner.initialize(
        session_factory=session_factory,
        kv_store=InMemoryKeyValueStore(),
        fetcher=fetcher,
        sink=sink,
    )
    yield task_runner
    await task_runner.close()


@pytest.mark.asyncio
async def test_crawl_listings_follows_pagination(runner):
    listings = await runner.crawl_listings(LISTING, "tesco", max_pages=5)

    assert [listing.url for listing in listings] == [
        PRODUCT,
        "https://www.tesco.com/groceries/en-GB/products/222",
    ]
    assert runner.fetcher.fetched == [LISTING, f"{LISTING}?page=2"]

    metrics = await runner.kv_store.get("crawler:health:metrics:tesco")
    assert metrics["total_crawls"] == 2
    assert metrics["success_rate"] == 100.0


@pytest.mark.asyncio
async def test_crawl_listings_page_limit(runner):
    listings = await runner.crawl_listings(LISTING, "tesco", max_pages=1)
    assert [listing.url for listing in listings] == [PRODUCT]


@pytest.mark.asyncio
async def test_crawl_product_records_price_and_alerts_on_drop(runner, session_factory, sink):
    runner.fetcher.pages[PRODUCT] = product_page("10.00")
    details = await runner.crawl_product("tesco", PRODUCT)
    assert details.price_pence == 1000

    runner.fetcher.pages[PRODUCT] = product_page("7.00")
    await runner.crawl_product("tesco", PRODUCT)

    async with session_factory() as db:
        prices = (await db.execute(select(ListingPrice.price_pence).order_by(ListingPrice.id))).scalars().all()
    assert prices == [1000, 700]

    [stored] = await runner.events.events_for("listing-1")
    assert stored.event.drop_percentage == 30.0
    assert [n.title for n in sink.sent] == ["Price drop: Harringtons Complete Adult Dog Food 2kg"]


@pytest.mark.asyncio
async def test_crawl_product_skipped_while_circuit_open(runner):
    await runner.kv_store.put("crawler:circuit:open:tesco", True, ttl=60)
    assert await runner.crawl_product("tesco", PRODUCT) is None
    assert runner.fetcher.fetched == []


def test_scheduler_has_single_crawl_job():
    scheduler = setup_scheduler(TaskRunner())
    [job] = scheduler.get_jobs()

    assert job.id == "crawl_retailers"
    assert job.max_instances == 1
    assert job.coalesce is True
    assert isinstance(job.trigger, IntervalTrigger)
    assert job.trigger.interval.total_seconds() == settings.crawl_interval_minutes * 60
