"""Tests for retailer health tracking."""

from datetime import timedelta

import pytest

from shelfwatch.reliability.reactors.retailer_health import (
    RetailerHealthReactor,
    compute_health_metrics,
    escalates,
)
from shelfwatch.reliability.retailer_status import RetailerStatus


@pytest.fixture
def health(kv_store, event_store, dispatcher, retailers, clock):
    retailers.add("bm", "B&M")
    reactor = RetailerHealthReactor(
        kv_store,
        event_store,
        retailers,
        clock=clock,
        window_hours=24,
        cache_ttl_hours=48,
        degraded_threshold=2,
        failed_threshold=3,
        pause_hours=1,
    )
    dispatcher.subscribe(reactor)
    return reactor


@pytest.mark.asyncio
async def test_consecutive_failures_escalate_status(health, run_crawl, retailers):
    record = retailers.records

    await run_crawl(success=False)
    assert record["bm"].status is RetailerStatus.ACTIVE
    assert record["bm"].consecutive_failures == 1
    assert record["bm"].last_failure_at == health.now()

    await run_crawl(success=False)
    assert record["bm"].status is RetailerStatus.DEGRADED
    assert record["bm"].paused_until is None

    await run_crawl(success=False)
    assert record["bm"].status is RetailerStatus.FAILED
    assert record["bm"].paused_until == health.now() + timedelta(hours=1)


@pytest.mark.asyncio
async def test_success_restores_active(health, run_crawl, retailers):
    for _ in range(3):
        await run_crawl(success=False)

    await run_crawl(success=True)
    record = retailers.records["bm"]
    assert record.status is RetailerStatus.ACTIVE
    assert record.consecutive_failures == 0
    assert record.paused_until is None


@pytest.mark.asyncio
async def test_failure_never_improves_status(health, run_crawl, retailers):
    """A retailer failed by the circuit breaker stays failed on the next failure."""
    retailers.records["bm"].status = RetailerStatus.FAILED

    await run_crawl(success=False)
    assert retailers.records["bm"].status is RetailerStatus.FAILED
    assert retailers.records["bm"].consecutive_failures == 1


@pytest.mark.asyncio
async def test_disabled_retailer_is_left_alone(health, run_crawl, retailers):
    retailers.records["bm"].status = RetailerStatus.DISABLED
    for _ in range(3):
        await run_crawl(success=False)
    assert retailers.records["bm"].status is RetailerStatus.DISABLED


@pytest.mark.asyncio
async def test_health_metrics_window(health, run_crawl, clock):
    await run_crawl(success=True, duration=2.0)
    await run_crawl(success=False)
    await run_crawl(success=True, duration=4.0)
    await run_crawl(success=True, duration=3.0)

    metrics = await health.get_health_metrics("bm")
    assert metrics["success_rate"] == 75.0
    assert metrics["total_crawls"] == 4
    assert metrics["failed_crawls"] == 1
    assert metrics["avg_duration_seconds"] == 3.0
    assert metrics["last_successful_crawl"] == clock.now

    clock.advance(25 * 3600)
    await run_crawl(success=False)
    metrics = await health.get_health_metrics("bm")
    assert metrics["total_crawls"] == 1
    assert metrics["success_rate"] == 0.0
    assert metrics["last_successful_crawl"] is None

    await health.reset_health("bm")
    assert await health.get_health_metrics("bm") is None


@pytest.mark.asyncio
async def test_unknown_retailer_is_skipped(health, run_crawl, kv_store):
    await run_crawl(retailer="Unknown Shop", success=False)
    assert await health.get_health_metrics("unknown-shop") is None


def test_compute_health_metrics_empty():
    metrics = compute_health_metrics([])
    assert metrics["success_rate"] == 0.0
    assert metrics["avg_duration_seconds"] is None


def test_escalates():
    assert escalates(RetailerStatus.ACTIVE, RetailerStatus.DEGRADED)
    assert escalates(RetailerStatus.DEGRADED, RetailerStatus.FAILED)
    assert not escalates(RetailerStatus.FAILED, RetailerStatus.DEGRADED)
    assert not escalates(RetailerStatus.DEGRADED, RetailerStatus.ACTIVE)
    assert not escalates(RetailerStatus.PAUSED, RetailerStatus.FAILED)


class FlakyRetailerRepository:
    """Raises on the first lookup, then delegates."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    async def get(self, slug):
        self.calls += 1
        if self.calls == 1:
            raise ConnectionError("database went away")
        return await self.inner.get(slug)

    async def save(self, record):
        await self.inner.save(record)


@pytest.mark.asyncio
async def test_failed_delivery_is_handled_on_redelivery(kv_store, event_store, retailers, clock, run_crawl):
    retailers.add("bm", "B&M")
    reactor = RetailerHealthReactor(kv_store, event_store, FlakyRetailerRepository(retailers), clock=clock)
    await run_crawl(success=False)
    failed = event_store.all_events[-1]

    with pytest.raises(ConnectionError):
        await reactor.handle(failed)
    assert await kv_store.get(reactor.claim_key(failed)) is None

    await reactor.handle(failed)
    assert retailers.records["bm"].consecutive_failures == 1
    assert (await reactor.get_health_metrics("bm"))["failed_crawls"] == 1

    # Handled once; a further redelivery is skipped
    await reactor.handle(failed)
    assert retailers.records["bm"].consecutive_failures == 1
