"""Failure-rate circuit breaker per retailer."""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from shelfwatch import metrics
from shelfwatch.config import settings
from shelfwatch.db.repositories import RetailerRepository
from shelfwatch.events.events import CrawlCompleted, CrawlFailed
from shelfwatch.events.store import EventStore, StoredEvent
from shelfwatch.reliability.kv_store import KeyValueStore, StoreUnavailableError
from shelfwatch.reliability.reactors.base import Reactor
from shelfwatch.reliability.retailer_status import RetailerStatus

logger = logging.getLogger(__name__)


def tracking_key(slug: str) -> str:
    return f"crawler:circuit:tracking:{slug}"


def open_key(slug: str) -> str:
    return f"crawler:circuit:open:{slug}"


def cooldown_key(slug: str) -> str:
    return f"crawler:circuit:cooldown:{slug}"


class CircuitBreakerReactor(Reactor):
    """
    Disables crawling for a retailer whose recent failure rate is too high.

    Outcomes of finished crawls go into a sliding window. After a failure,
    when the window holds at least ``min_samples`` entries and the failure
    rate reaches ``threshold_percent``, the retailer is set to failed and the
    circuit opens for ``cooldown_minutes``. The next successful crawl closes it.
    """

    name = "circuit_breaker"

    def __init__(
        self,
        store: KeyValueStore,
        events: EventStore,
        retailers: RetailerRepository,
        clock: Callable[[], float] = time.time,
        threshold_percent: Optional[float] = None,
        window_minutes: Optional[int] = None,
        cooldown_minutes: Optional[int] = None,
        min_samples: Optional[int] = None,
        claim_ttl_hours: Optional[float] = None,
    ):
        super().__init__(store, events, clock=clock, claim_ttl_hours=claim_ttl_hours)
        self.retailers = retailers
        self.threshold_percent = (
            threshold_percent if threshold_percent is not None else settings.circuit_failure_threshold_percent
        )
        self.window_minutes = window_minutes if window_minutes is not None else settings.circuit_window_minutes
        self.cooldown_minutes = (
            cooldown_minutes if cooldown_minutes is not None else settings.circuit_cooldown_minutes
        )
        self.min_samples = min_samples if min_samples is not None else settings.circuit_min_samples

    async def on_crawl_failed(self, stored: StoredEvent) -> None:
        event: CrawlFailed = stored.event
        started = await self.crawl_started(event.crawl_id)
        if started is None:
            return
        outcomes = await self.record_outcome(started.retailer_slug, False)
        await self.evaluate(started.retailer_slug, outcomes)

    async def on_crawl_completed(self, stored: StoredEvent) -> None:
        event: CrawlCompleted = stored.event
        started = await self.crawl_started(event.crawl_id)
        if started is None:
            return
        await self.record_outcome(started.retailer_slug, True)
        if await self.is_open(started.retailer_slug):
            await self.close_circuit(started.retailer_slug)

    async def record_outcome(self, slug: str, success: bool) -> List[Dict[str, Any]]:
        """Append an outcome and prune entries older than the window."""
        now = self.clock()
        cutoff = now - self.window_minutes * 60

        def append_and_prune(outcomes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            outcomes = list(outcomes or [])
            outcomes.append({"success": success, "timestamp": now})
            return [o for o in outcomes if o["timestamp"] >= cutoff]

        return await self.store.update(
            tracking_key(slug),
            append_and_prune,
            ttl=(self.window_minutes + 5) * 60,
            default=[],
        )

    async def evaluate(self, slug: str, outcomes: List[Dict[str, Any]]) -> None:
        total = len(outcomes)
        if total < self.min_samples:
            return

        failures = sum(1 for o in outcomes if not o["success"])
        failure_rate = failures / total * 100
        if failure_rate >= self.threshold_percent:
            await self.open_circuit(slug, failure_rate, failures, total)

    async def open_circuit(self, slug: str, failure_rate: float, failures: int, total: int) -> None:
        if await self.is_open(slug):
            return

        record = await self.retailers.get(slug)
        if record is None or not record.status.is_available_for_crawling():
            return

        previous = record.status
        record.status = record.status.transition_to(RetailerStatus.FAILED)
        await self.retailers.save(record)

        logger.error(
            f"CIRCUIT BREAKER ACTIVATED: {slug} disabled, {failures}/{total} crawls failed "
            f"({failure_rate:.2f}%) in the last {self.window_minutes} minutes",
            extra={
                "retailer": slug,
                "failure_rate": round(failure_rate, 2),
                "threshold": self.threshold_percent,
                "previous_status": previous.value,
                "cooldown_minutes": self.cooldown_minutes,
            },
        )

        cooldown = self.cooldown_minutes * 60
        await self.store.put(cooldown_key(slug), self.clock(), ttl=cooldown)
        await self.store.put(open_key(slug), True, ttl=cooldown)
        metrics.set_circuit_state(slug, True)

    async def close_circuit(self, slug: str) -> None:
        await self._clear(slug)
        await self._restore_status(slug)
        logger.info(f"Circuit breaker reset for {slug} after successful crawl")

    async def is_open(self, slug: str) -> bool:
        """Whether the circuit is open. An unreachable store reads as closed."""
        try:
            return bool(await self.store.get(open_key(slug), False))
        except StoreUnavailableError as e:
            logger.warning(f"Circuit state unknown for {slug}, treating as closed: {e}")
            return False

    async def get_cooldown_expiry(self, slug: str) -> Optional[datetime]:
        opened_at = await self.store.get(cooldown_key(slug))
        if opened_at is None:
            return None
        return datetime.fromtimestamp(float(opened_at), tz=timezone.utc) + timedelta(
            minutes=self.cooldown_minutes
        )

    async def reset(self, slug: str) -> None:
        """Manually close the circuit and restore a failed retailer to active."""
        await self._clear(slug)
        if await self._restore_status(slug):
            logger.info(f"Circuit breaker manually reset for {slug}")

    async def _clear(self, slug: str) -> None:
        await self.store.forget(open_key(slug))
        await self.store.forget(cooldown_key(slug))
        await self.store.forget(tracking_key(slug))
        metrics.set_circuit_state(slug, False)

    async def _restore_status(self, slug: str) -> bool:
        record = await self.retailers.get(slug)
        if record is None or record.status is not RetailerStatus.FAILED:
            return False
        record.status = RetailerStatus.ACTIVE
        await self.retailers.save(record)
        return True
