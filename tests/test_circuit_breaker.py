"""Tests for the failure-rate circuit breaker."""

from datetime import datetime, timedelta, timezone

import pytest

from shelfwatch.config import settings
from shelfwatch.events.aggregate import CrawlAggregate
from shelfwatch.events.events import CrawlFailed
from shelfwatch.reliability.kv_store import StoreUnavailableError
from shelfwatch.reliability.reactors.circuit_breaker import (
    CircuitBreakerReactor,
    open_key,
    tracking_key,
)
from shelfwatch.reliability.retailer_status import RetailerStatus


class UnavailableStore:
    async def get(self, key, default=None):
        raise StoreUnavailableError("down")

    async def add(self, key, value, ttl=None):
        raise StoreUnavailableError("down")


@pytest.fixture
def breaker(kv_store, event_store, dispatcher, retailers, clock):
    retailers.add("bm", "B&M")
    reactor = CircuitBreakerReactor(
        kv_store,
        event_store,
        retailers,
        clock=clock,
        threshold_percent=50,
        window_minutes=60,
        cooldown_minutes=30,
        min_samples=4,
    )
    dispatcher.subscribe(reactor)
    return reactor


@pytest.mark.asyncio
async def test_opens_at_threshold_and_closes_on_success(breaker, run_crawl, retailers, clock):
    """Two successes then two failures open; the next success closes."""
    await run_crawl(success=True)
    await run_crawl(success=True)
    await run_crawl(success=False)
    assert not await breaker.is_open("bm")

    await run_crawl(success=False)
    assert await breaker.is_open("bm")
    assert retailers.records["bm"].status is RetailerStatus.FAILED
    assert await breaker.get_cooldown_expiry("bm") == datetime.fromtimestamp(
        clock.now, tz=timezone.utc
    ) + timedelta(minutes=30)

    await run_crawl(success=True)
    assert not await breaker.is_open("bm")
    assert await breaker.get_cooldown_expiry("bm") is None
    assert retailers.records["bm"].status is RetailerStatus.ACTIVE


@pytest.mark.asyncio
async def test_needs_minimum_samples(breaker, run_crawl, retailers):
    for _ in range(3):
        await run_crawl(success=False)
    assert not await breaker.is_open("bm")
    assert retailers.records["bm"].status is RetailerStatus.ACTIVE

    await run_crawl(success=False)
    assert await breaker.is_open("bm")


@pytest.mark.asyncio
async def test_old_outcomes_leave_the_window(breaker, run_crawl, clock, kv_store):
    await run_crawl(success=False)
    await run_crawl(success=False)
    clock.advance(61 * 60)
    await run_crawl(success=True)
    await run_crawl(success=True)
    await run_crawl(success=False)

    assert len(await kv_store.get(tracking_key("bm"))) == 3
    assert not await breaker.is_open("bm")


@pytest.mark.asyncio
async def test_cooldown_expires(breaker, run_crawl, clock):
    for _ in range(4):
        await run_crawl(success=False)
    assert await breaker.is_open("bm")

    clock.advance(30 * 60)
    assert not await breaker.is_open("bm")


@pytest.mark.asyncio
async def test_unavailable_retailer_is_not_tripped(breaker, run_crawl, retailers):
    retailers.records["bm"].status = RetailerStatus.PAUSED
    for _ in range(4):
        await run_crawl(success=False)
    assert not await breaker.is_open("bm")
    assert retailers.records["bm"].status is RetailerStatus.PAUSED


@pytest.mark.asyncio
async def test_manual_reset(breaker, run_crawl, retailers, kv_store):
    for _ in range(4):
        await run_crawl(success=False)

    await breaker.reset("bm")
    assert not await breaker.is_open("bm")
    assert await kv_store.get(tracking_key("bm")) is None
    assert retailers.records["bm"].status is RetailerStatus.ACTIVE


@pytest.mark.asyncio
async def test_each_event_is_handled_once(breaker, event_store, kv_store):
    aggregate = CrawlAggregate().start_crawl("https://www.bmstores.co.uk/pets", "B&M")
    aggregate.mark_as_failed("boom")
    await aggregate.persist(event_store)

    failed = event_store.all_events[-1]
    await breaker.handle(failed)
    await breaker.handle(failed)
    assert len(await kv_store.get(tracking_key("bm"))) == 1


@pytest.mark.asyncio
async def test_store_outage_fails_open(event_store, retailers, clock):
    reactor = CircuitBreakerReactor(UnavailableStore(), event_store, retailers, clock=clock)
    assert await reactor.is_open("bm") is False

    aggregate = CrawlAggregate().start_crawl("https://www.bmstores.co.uk/pets", "B&M")
    aggregate.mark_as_failed("boom")
    await aggregate.persist(event_store)
    await reactor.handle(event_store.all_events[-1])


@pytest.mark.asyncio
async def test_missing_start_event_is_ignored(breaker, event_store, kv_store):
    await event_store.append("orphan", [CrawlFailed(crawl_id="orphan", reason="boom")])
    assert await kv_store.get(tracking_key("bm")) is None
    assert await kv_store.get(open_key("bm")) is None


@pytest.mark.asyncio
async def test_default_settings_need_three_samples(kv_store, event_store, dispatcher, retailers, clock, run_crawl):
    """With the configured defaults two failures alone keep the circuit closed."""
    assert settings.circuit_min_samples == 3
    assert settings.circuit_failure_threshold_percent == 50.0
    retailers.add("bm", "B&M")
    reactor = CircuitBreakerReactor(kv_store, event_store, retailers, clock=clock)
    dispatcher.subscribe(reactor)

    await run_crawl(success=False)
    await run_crawl(success=False)
    assert not await reactor.is_open("bm")
    assert retailers.records["bm"].status is RetailerStatus.ACTIVE

    await run_crawl(success=False)
    assert await reactor.is_open("bm")
    assert retailers.records["bm"].status is RetailerStatus.FAILED
