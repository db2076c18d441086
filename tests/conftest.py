"""Shared test fixtures."""

from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shelfwatch.db.models import Base
from shelfwatch.db.repositories import UserPriceAlert
from shelfwatch.events.aggregate import CrawlAggregate
from shelfwatch.events.store import EventDispatcher, InMemoryEventStore
from shelfwatch.notify.sinks import Notification
from shelfwatch.reliability.kv_store import InMemoryKeyValueStore
from shelfwatch.reliability.retailer_status import RetailerRecord, RetailerStatus

START_TIME = 1_700_000_000.0


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRetailerRepository:
    def __init__(self):
        self.records: Dict[str, RetailerRecord] = {}

    def add(self, slug: str, name: str = "", status: RetailerStatus = RetailerStatus.ACTIVE) -> RetailerRecord:
        self.records[slug] = RetailerRecord(slug=slug, name=name or slug, status=status)
        return self.records[slug]

    async def get(self, slug: str) -> Optional[RetailerRecord]:
        record = self.records.get(slug)
        return replace(record) if record else None

    async def save(self, record: RetailerRecord) -> None:
        self.records[record.slug] = replace(record)


class FakePriceAlertRepository:
    """Alerts keyed by product, with listing -> product links."""

    def __init__(self):
        self.links: Dict[int, List[int]] = {}
        self.alerts: Dict[int, UserPriceAlert] = {}
        self.inactive: set = set()

    def link(self, listing_id: int, product_id: int) -> None:
        self.links.setdefault(listing_id, []).append(product_id)

    def add_alert(
        self,
        alert_id: int,
        product_id: int,
        target_price_pence: int,
        user_id: int = 1,
        last_notified_at: Optional[datetime] = None,
        is_active: bool = True,
    ) -> None:
        self.alerts[alert_id] = UserPriceAlert(
            id=alert_id,
            user_id=user_id,
            product_id=product_id,
            target_price_pence=target_price_pence,
            user_email=f"user{user_id}@example.com",
            last_notified_at=last_notified_at,
        )
        if not is_active:
            self.inactive.add(alert_id)

    async def alerts_for_drop(
        self, product_listing_id: int, new_price_pence: int, notified_before: datetime
    ) -> List[UserPriceAlert]:
        product_ids = self.links.get(product_listing_id, [])
        return [
            alert
            for alert in self.alerts.values()
            if alert.product_id in product_ids
            and alert.id not in self.inactive
            and alert.target_price_pence >= new_price_pence
            and (alert.last_notified_at is None or alert.last_notified_at < notified_before)
        ]

    async def mark_notified(self, alert_id: int, at: datetime) -> None:
        self.alerts[alert_id] = replace(self.alerts[alert_id], last_notified_at=at)


class RecordingSink:
    def __init__(self):
        self.sent: List[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def kv_store(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def event_store(dispatcher):
    return InMemoryEventStore(dispatcher)


@pytest.fixture
def retailers():
    return FakeRetailerRepository()


@pytest.fixture
def price_alerts():
    return FakePriceAlertRepository()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def user_sink():
    return RecordingSink()


@pytest.fixture
def run_crawl(event_store):
    """Persist a finished crawl for a retailer and return its aggregate."""

    async def run(retailer: str = "B&M", success: bool = True, reason: str = "HTTP 503", duration: float = 2.0):
        aggregate = CrawlAggregate().start_crawl("https://www.bmstores.co.uk/pets", retailer)
        if success:
            aggregate.complete_crawl({"duration_seconds": duration})
        else:
            aggregate.mark_as_failed(
                reason,
                {"url": "https://www.bmstores.co.uk/pets", "exception_class": "TransientFetchError"},
            )
        await aggregate.persist(event_store)
        return aggregate

    return run


@pytest_asyncio.fixture
async def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()
