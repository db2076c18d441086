"""Base class for event reactors."""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from shelfwatch import metrics
from shelfwatch.config import settings
from shelfwatch.events.events import CrawlStarted
from shelfwatch.events.store import EventStore, StoredEvent
from shelfwatch.reliability.kv_store import KeyValueStore, StoreUnavailableError

logger = logging.getLogger(__name__)


class Reactor:
    """
    Consumes stored events and dispatches them to ``on_<event name>`` handlers.

    Delivery is at-least-once, so each stored event is claimed once per
    reactor with a set-if-absent key before its handler runs. The claim is
    released when the handler raises, so a redelivery is handled again. A
    store outage is logged and the event is dropped for this reactor.
    """

    name = "reactor"

    def __init__(
        self,
        store: KeyValueStore,
        events: EventStore,
        clock: Callable[[], float] = time.time,
        claim_ttl_hours: Optional[float] = None,
    ):
        self.store = store
        self.events = events
        self.clock = clock
        self.claim_ttl_hours = (
            claim_ttl_hours if claim_ttl_hours is not None else settings.reactor_claim_ttl_hours
        )

    def now(self) -> datetime:
        """Current time as a naive UTC datetime."""
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc).replace(tzinfo=None)

    def claim_key(self, stored: StoredEvent) -> str:
        return f"crawler:reactor:{self.name}:{stored.id}"

    async def handle(self, stored: StoredEvent) -> None:
        handler = getattr(self, f"on_{stored.event.name}", None)
        if handler is None:
            return

        claim_key = self.claim_key(stored)
        try:
            claimed = await self.store.add(claim_key, 1, self.claim_ttl_hours * 3600)
            if not claimed:
                logger.debug(f"{self.name}: event {stored.id} already handled, skipping")
                return
            try:
                await handler(stored)
            except Exception:
                # Release the claim so a redelivery of this event is handled
                await self.store.forget(claim_key)
                raise
        except StoreUnavailableError as e:
            logger.warning(f"{self.name}: key-value store unavailable, dropping event {stored.id}: {e}")
            metrics.record_reactor_error(self.name)

    async def crawl_started(self, crawl_id: str) -> Optional[CrawlStarted]:
        """The start event of a crawl, which carries its retailer."""
        event = await self.events.first_of_type(crawl_id, CrawlStarted.name)
        if event is None:
            logger.warning(f"{self.name}: could not determine retailer for crawl {crawl_id}")
            return None
        return event
