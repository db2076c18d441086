"""Domain events recorded in the event log.

Each event is a frozen dataclass tagged with a ``name``. The name is what
is persisted as the event class and what reactors dispatch on
(``on_<name>``).
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Optional, Type


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Event:
    name: ClassVar[str] = "event"

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CrawlStarted(Event):
    name: ClassVar[str] = "crawl_started"

    crawl_id: str
    url: str
    retailer: str
    retailer_slug: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    started_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class ProductListingDiscovered(Event):
    name: ClassVar[str] = "product_listing_discovered"

    crawl_id: str
    url: str
    retailer: str
    category: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CrawlCompleted(Event):
    name: ClassVar[str] = "crawl_completed"

    crawl_id: str
    product_listings_discovered: int = 0
    statistics: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CrawlFailed(Event):
    name: ClassVar[str] = "crawl_failed"

    crawl_id: str
    reason: str
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceDropped(Event):
    name: ClassVar[str] = "price_dropped"

    product_listing_id: int
    product_title: str
    retailer_name: str
    product_url: str
    old_price_pence: int
    new_price_pence: int
    drop_percentage: float


EVENT_TYPES: Dict[str, Type[Event]] = {
    cls.name: cls
    for cls in (CrawlStarted, ProductListingDiscovered, CrawlCompleted, CrawlFailed, PriceDropped)
}


def event_from_payload(name: str, payload: Dict[str, Any]) -> Event:
    """
    Rebuild an event from its stored name and properties.

    Raises:
        ValueError: If the event name is not known
    """
    cls = EVENT_TYPES.get(name)
    if cls is None:
        raise ValueError(f"Unknown event type: {name}")
    return cls(**payload)
