"""Tests for the crawl aggregate state machine."""

import pytest

from shelfwatch.events.aggregate import (
    CrawlAggregate,
    CrawlState,
    CrawlStatus,
    InvalidCrawlTransition,
    apply,
)
from shelfwatch.events.events import (
    CrawlCompleted,
    CrawlFailed,
    CrawlStarted,
    PriceDropped,
    ProductListingDiscovered,
)

URL = "https://www.bmstores.co.uk/products/pets/dog/food"


def started():
    return CrawlAggregate("crawl-1").start_crawl(URL, "B&M", {"source": "test"})


def test_start_records_event_and_slug():
    aggregate = started()

    assert aggregate.status is CrawlStatus.IN_PROGRESS
    [event] = aggregate.pending_events
    assert isinstance(event, CrawlStarted)
    assert event.retailer == "B&M"
    assert event.retailer_slug == "bm"
    assert event.metadata == {"source": "test"}
    assert aggregate.state.retailer_slug == "bm"


def test_explicit_slug_wins():
    aggregate = CrawlAggregate().start_crawl(URL, "Pets at Home", retailer_slug="pah")
    assert aggregate.state.retailer_slug == "pah"
    assert aggregate.crawl_id


def test_completion_carries_discovered_count():
    aggregate = started()
    aggregate.record_product_listing_discovered(URL + "/1", "B&M", "dog-food")
    aggregate.record_product_listing_discovered(URL + "/2", "B&M")
    aggregate.complete_crawl({"duration_seconds": 1.5})

    completed = aggregate.pending_events[-1]
    assert isinstance(completed, CrawlCompleted)
    assert completed.product_listings_discovered == 2
    assert completed.statistics == {"duration_seconds": 1.5}
    assert aggregate.status is CrawlStatus.COMPLETED
    assert aggregate.status.is_terminal


def test_commands_before_start_are_rejected():
    aggregate = CrawlAggregate("crawl-2")
    with pytest.raises(InvalidCrawlTransition):
        aggregate.record_product_listing_discovered(URL, "B&M")
    with pytest.raises(InvalidCrawlTransition):
        aggregate.complete_crawl()
    with pytest.raises(InvalidCrawlTransition):
        aggregate.mark_as_failed("boom")
    assert aggregate.pending_events == []


def test_terminal_states():
    """Repeating the terminal command is a no-op; anything else is rejected."""
    completed = started().complete_crawl()
    count = len(completed.pending_events)
    completed.complete_crawl()
    assert len(completed.pending_events) == count
    with pytest.raises(InvalidCrawlTransition):
        completed.mark_as_failed("late failure")
    with pytest.raises(InvalidCrawlTransition):
        completed.record_product_listing_discovered(URL, "B&M")

    failed = started().mark_as_failed("timeout", {"attempts": 3})
    failed.mark_as_failed("again")
    assert [type(e) for e in failed.pending_events] == [CrawlStarted, CrawlFailed]
    assert failed.state.failure_reason == "timeout"
    assert failed.state.failure_context == {"attempts": 3}
    with pytest.raises(InvalidCrawlTransition):
        failed.complete_crawl()
    with pytest.raises(InvalidCrawlTransition):
        failed.start_crawl(URL, "B&M")


def test_apply_ignores_unrelated_events():
    state = CrawlState(crawl_id="x")
    event = PriceDropped(
        product_listing_id=1,
        product_title="Chews",
        retailer_name="B&M",
        product_url=URL,
        old_price_pence=200,
        new_price_pence=100,
        drop_percentage=50.0,
    )
    assert apply(state, event) == state


@pytest.mark.asyncio
async def test_persist_and_retrieve(event_store):
    aggregate = started()
    aggregate.record_product_listing_discovered(URL + "/1", "B&M")
    await aggregate.persist(event_store)
    assert aggregate.pending_events == []

    await aggregate.persist(event_store)
    assert len(event_store.all_events) == 2

    restored = await CrawlAggregate.retrieve(event_store, "crawl-1")
    assert restored.status is CrawlStatus.IN_PROGRESS
    assert restored.state.product_listings_discovered == 1
    assert restored.state.url == URL

    restored.complete_crawl()
    await restored.persist(event_store)
    stored = await event_store.events_for("crawl-1")
    assert [s.event.name for s in stored] == [
        "crawl_started",
        "product_listing_discovered",
        "crawl_completed",
    ]
    assert isinstance(stored[1].event, ProductListingDiscovered)
    assert [s.id for s in stored] == [1, 2, 3]
