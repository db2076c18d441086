"""Retailer health tracking from crawl outcomes."""

import logging
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from shelfwatch import metrics
from shelfwatch.config import settings
from shelfwatch.db.repositories import RetailerRepository
from shelfwatch.events.events import CrawlCompleted, CrawlFailed
from shelfwatch.events.store import EventStore, StoredEvent
from shelfwatch.reliability.kv_store import KeyValueStore
from shelfwatch.reliability.reactors.base import Reactor
from shelfwatch.reliability.retailer_status import RetailerStatus

logger = logging.getLogger(__name__)

# Failures may escalate a retailer along this order but never improve it
_SEVERITY = {
    RetailerStatus.ACTIVE: 0,
    RetailerStatus.DEGRADED: 1,
    RetailerStatus.FAILED: 2,
}


def results_key(slug: str) -> str:
    return f"crawler:health:results:{slug}"


def metrics_key(slug: str) -> str:
    return f"crawler:health:metrics:{slug}"


def escalates(current: RetailerStatus, target: RetailerStatus) -> bool:
    return current in _SEVERITY and _SEVERITY[target] > _SEVERITY[current]


def compute_health_metrics(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Aggregate a window of crawl results.

    The average duration only counts results that carry a duration.
    """
    total = len(results)
    successes = sum(1 for r in results if r.get("success"))
    durations = [r["duration"] for r in results if r.get("duration") is not None]

    last_successful_crawl = None
    for result in reversed(results):
        if result.get("success"):
            last_successful_crawl = result["timestamp"]
            break

    return {
        "success_rate": round(successes / total * 100, 2) if total else 0.0,
        "total_crawls": total,
        "successful_crawls": successes,
        "failed_crawls": total - successes,
        "avg_duration_seconds": round(sum(durations) / len(durations), 2) if durations else None,
        "last_successful_crawl": last_successful_crawl,
    }


class RetailerHealthReactor(Reactor):
    """
    Keeps retailer health up to date.

    Maintains consecutive failure counts and status on the retailer row, and
    a 24 hour window of results with derived metrics in the key-value store.
    """

    name = "retailer_health"

    def __init__(
        self,
        store: KeyValueStore,
        events: EventStore,
        retailers: RetailerRepository,
        clock: Callable[[], float] = time.time,
        window_hours: Optional[int] = None,
        cache_ttl_hours: Optional[int] = None,
        degraded_threshold: Optional[int] = None,
        failed_threshold: Optional[int] = None,
        pause_hours: Optional[int] = None,
        claim_ttl_hours: Optional[float] = None,
    ):
        super().__init__(store, events, clock=clock, claim_ttl_hours=claim_ttl_hours)
        self.retailers = retailers
        self.window_hours = window_hours if window_hours is not None else settings.health_window_hours
        self.cache_ttl_hours = cache_ttl_hours if cache_ttl_hours is not None else settings.health_cache_ttl_hours
        self.degraded_threshold = (
            degraded_threshold if degraded_threshold is not None else settings.health_degraded_threshold
        )
        self.failed_threshold = failed_threshold if failed_threshold is not None else settings.health_failed_threshold
        self.pause_hours = pause_hours if pause_hours is not None else settings.health_pause_hours

    async def on_crawl_completed(self, stored: StoredEvent) -> None:
        event: CrawlCompleted = stored.event
        started = await self.crawl_started(event.crawl_id)
        if started is None:
            return
        slug = started.retailer_slug

        record = await self.retailers.get(slug)
        if record is None:
            logger.warning(f"Retailer {slug} not found for completed crawl {event.crawl_id}")
            return

        record.consecutive_failures = 0
        record.paused_until = None
        if record.status.can_transition_to(RetailerStatus.ACTIVE):
            record.status = RetailerStatus.ACTIVE
        await self.retailers.save(record)

        await self.record_result(slug, True, event.statistics.get("duration_seconds"))
        logger.debug(f"Retailer {slug} health updated after successful crawl {event.crawl_id}")

    async def on_crawl_failed(self, stored: StoredEvent) -> None:
        event: CrawlFailed = stored.event
        started = await self.crawl_started(event.crawl_id)
        if started is None:
            return
        slug = started.retailer_slug

        record = await self.retailers.get(slug)
        if record is None:
            logger.warning(f"Retailer {slug} not found for failed crawl {event.crawl_id}")
            return

        now = self.now()
        record.consecutive_failures += 1
        record.last_failure_at = now

        target = self.determine_status(record.consecutive_failures)
        if not escalates(record.status, target):
            logger.debug(f"Retailer {slug} stays {record.status.value} after failure")
        elif record.status.can_transition_to(target):
            if target is RetailerStatus.FAILED and not record.is_paused(now):
                record.paused_until = now + timedelta(hours=self.pause_hours)
                logger.error(
                    f"CIRCUIT BREAKER ACTIVATED: {slug} failed after "
                    f"{record.consecutive_failures} consecutive failures, paused until "
                    f"{record.paused_until.isoformat()}",
                    extra={"retailer": slug, "previous_status": record.status.value},
                )
            record.status = target
        else:
            logger.warning(
                f"Cannot move {slug} from {record.status.value} to {target.value} "
                f"after {record.consecutive_failures} consecutive failures"
            )
        await self.retailers.save(record)

        await self.record_result(slug, False, None)
        logger.debug(
            f"Retailer {slug} health updated after failed crawl {event.crawl_id}: {event.reason}"
        )

    def determine_status(self, consecutive_failures: int) -> RetailerStatus:
        if consecutive_failures >= self.failed_threshold:
            return RetailerStatus.FAILED
        if consecutive_failures >= self.degraded_threshold:
            return RetailerStatus.DEGRADED
        return RetailerStatus.ACTIVE

    async def record_result(self, slug: str, success: bool, duration: Optional[float]) -> Dict[str, Any]:
        now = self.clock()
        cutoff = now - self.window_hours * 3600
        ttl = self.cache_ttl_hours * 3600

        def append_and_prune(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            results = list(results or [])
            results.append({"success": success, "duration": duration, "timestamp": now})
            return [r for r in results if r["timestamp"] >= cutoff]

        results = await self.store.update(results_key(slug), append_and_prune, ttl=ttl, default=[])
        health = compute_health_metrics(results)
        health["updated_at"] = now
        await self.store.put(metrics_key(slug), health, ttl=ttl)
        metrics.update_success_rate(slug, health["success_rate"])
        return health

    async def get_health_metrics(self, slug: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(metrics_key(slug))

    async def reset_health(self, slug: str) -> None:
        await self.store.forget(results_key(slug))
        await self.store.forget(metrics_key(slug))
        logger.info(f"Health metrics reset for {slug}")
