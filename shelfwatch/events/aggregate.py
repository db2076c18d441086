"""Crawl aggregate: an explicit state machine over crawl events."""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from shelfwatch.events.events import (
    CrawlCompleted,
    CrawlFailed,
    CrawlStarted,
    Event,
    ProductListingDiscovered,
)
from shelfwatch.events.store import EventStore
from shelfwatch.utils.slugs import slugify

logger = logging.getLogger(__name__)


class InvalidCrawlTransition(RuntimeError):
    """Raised when a command is not valid for the aggregate's current status."""


class CrawlStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CrawlStatus.COMPLETED, CrawlStatus.FAILED)


@dataclass(frozen=True)
class CrawlState:
    crawl_id: str
    status: CrawlStatus = CrawlStatus.NOT_STARTED
    url: Optional[str] = None
    retailer: Optional[str] = None
    retailer_slug: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[str] = None
    product_listings_discovered: int = 0
    statistics: Dict[str, Any] = field(default_factory=dict)
    failure_reason: Optional[str] = None
    failure_context: Dict[str, Any] = field(default_factory=dict)


def apply(state: CrawlState, event: Event) -> CrawlState:
    """Fold one event into the crawl state. Unknown events leave it unchanged."""
    if isinstance(event, CrawlStarted):
        return replace(
            state,
            status=CrawlStatus.IN_PROGRESS,
            url=event.url,
            retailer=event.retailer,
            retailer_slug=event.retailer_slug,
            metadata=dict(event.metadata),
            started_at=event.started_at,
        )
    if isinstance(event, ProductListingDiscovered):
        return replace(state, product_listings_discovered=state.product_listings_discovered + 1)
    if isinstance(event, CrawlCompleted):
        return replace(state, status=CrawlStatus.COMPLETED, statistics=dict(event.statistics))
    if isinstance(event, CrawlFailed):
        return replace(
            state,
            status=CrawlStatus.FAILED,
            failure_reason=event.reason,
            failure_context=dict(event.context),
        )
    return state


class CrawlAggregate:
    """
    One logical crawl of one URL.

    Commands validate against the current state, then record an event which
    is applied immediately and held as pending until ``persist``.

    NotStarted -> InProgress -> Completed | Failed
    """

    def __init__(self, crawl_id: Optional[str] = None):
        self.state = CrawlState(crawl_id=crawl_id or str(uuid4()))
        self._pending: List[Event] = []

    @property
    def crawl_id(self) -> str:
        return self.state.crawl_id

    @property
    def status(self) -> CrawlStatus:
        return self.state.status

    @property
    def pending_events(self) -> List[Event]:
        return list(self._pending)

    @classmethod
    async def retrieve(cls, store: EventStore, crawl_id: str) -> "CrawlAggregate":
        """Rebuild an aggregate by folding its stored events."""
        aggregate = cls(crawl_id)
        for stored in await store.events_for(crawl_id):
            aggregate.state = apply(aggregate.state, stored.event)
        return aggregate

    def start_crawl(
        self,
        url: str,
        retailer: str,
        metadata: Optional[Dict[str, Any]] = None,
        retailer_slug: Optional[str] = None,
    ) -> "CrawlAggregate":
        if self.status is not CrawlStatus.NOT_STARTED:
            raise InvalidCrawlTransition(
                f"Cannot start crawl {self.crawl_id}: status is {self.status.value}"
            )
        return self._record_that(
            CrawlStarted(
                crawl_id=self.crawl_id,
                url=url,
                retailer=retailer,
                retailer_slug=retailer_slug or slugify(retailer),
                metadata=dict(metadata or {}),
            )
        )

    def record_product_listing_discovered(
        self,
        url: str,
        retailer: str,
        category: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "CrawlAggregate":
        self._require(CrawlStatus.IN_PROGRESS, "record a discovered listing")
        return self._record_that(
            ProductListingDiscovered(
                crawl_id=self.crawl_id,
                url=url,
                retailer=retailer,
                category=category,
                metadata=dict(metadata or {}),
            )
        )

    def complete_crawl(self, statistics: Optional[Dict[str, Any]] = None) -> "CrawlAggregate":
        if self.status is CrawlStatus.COMPLETED:
            logger.debug(f"Crawl {self.crawl_id} already completed")
            return self
        self._require(CrawlStatus.IN_PROGRESS, "complete")
        return self._record_that(
            CrawlCompleted(
                crawl_id=self.crawl_id,
                product_listings_discovered=self.state.product_listings_discovered,
                statistics=dict(statistics or {}),
            )
        )

    def mark_as_failed(self, reason: str, context: Optional[Dict[str, Any]] = None) -> "CrawlAggregate":
        if self.status is CrawlStatus.FAILED:
            logger.debug(f"Crawl {self.crawl_id} already failed")
            return self
        self._require(CrawlStatus.IN_PROGRESS, "fail")
        return self._record_that(
            CrawlFailed(crawl_id=self.crawl_id, reason=reason, context=dict(context or {}))
        )

    async def persist(self, store: EventStore) -> None:
        """Append pending events to the store; they are cleared once durable."""
        if not self._pending:
            return
        await store.append(self.crawl_id, self._pending)
        self._pending = []

    def _require(self, expected: CrawlStatus, action: str) -> None:
        if self.status is not expected:
            raise InvalidCrawlTransition(
                f"Cannot {action} crawl {self.crawl_id}: status is {self.status.value}"
            )

    def _record_that(self, event: Event) -> "CrawlAggregate":
        self.state = apply(self.state, event)
        self._pending.append(event)
        return self
