"""Alerts on repeated crawl failures for a retailer."""

import logging
import time
from typing import Callable, Optional

from shelfwatch.config import settings
from shelfwatch.events.events import CrawlFailed
from shelfwatch.events.store import EventStore, StoredEvent
from shelfwatch.notify.sinks import Notification, NotificationSink, Severity
from shelfwatch.reliability.kv_store import KeyValueStore
from shelfwatch.reliability.reactors.base import Reactor

logger = logging.getLogger(__name__)


def failures_key(slug: str) -> str:
    return f"crawler:failures:{slug}"


class CrawlFailureAlertReactor(Reactor):
    """
    Counts failures per retailer and raises an alert at a threshold.

    Each failure refreshes the counter's TTL, so the count resets after a gap
    longer than the window. The count is independent of the circuit breaker.
    """

    name = "crawl_failure_alert"

    def __init__(
        self,
        store: KeyValueStore,
        events: EventStore,
        sink: NotificationSink,
        clock: Callable[[], float] = time.time,
        threshold: Optional[int] = None,
        window_minutes: Optional[int] = None,
        claim_ttl_hours: Optional[float] = None,
    ):
        super().__init__(store, events, clock=clock, claim_ttl_hours=claim_ttl_hours)
        self.sink = sink
        self.threshold = threshold if threshold is not None else settings.failure_alert_threshold
        self.window_minutes = window_minutes if window_minutes is not None else settings.failure_alert_window_minutes

    async def on_crawl_failed(self, stored: StoredEvent) -> None:
        event: CrawlFailed = stored.event
        started = await self.crawl_started(event.crawl_id)
        if started is None:
            return
        slug = started.retailer_slug

        failure_count = await self.store.update(
            failures_key(slug),
            lambda count: int(count or 0) + 1,
            ttl=self.window_minutes * 60,
            default=0,
        )
        logger.info(
            f"Crawl failure recorded for {slug} ({failure_count} in a row): {event.reason}",
            extra={"retailer": slug, "crawl_id": event.crawl_id},
        )

        if failure_count >= self.threshold:
            await self.send_alert(started.retailer, slug, failure_count, event)

    async def send_alert(self, retailer: str, slug: str, failure_count: int, event: CrawlFailed) -> None:
        message = (
            f"Retailer '{retailer}' has failed {failure_count} consecutive crawls. "
            f"Immediate attention required."
        )
        logger.error(
            f"ALERT: Multiple consecutive crawl failures detected for {slug}",
            extra={
                "retailer": slug,
                "failure_count": failure_count,
                "threshold": self.threshold,
                "crawl_id": event.crawl_id,
            },
        )
        await self.sink.send(
            Notification(
                title=f"Crawler failing: {retailer}",
                message=message,
                severity=Severity.CRITICAL,
                fields={
                    "Failures": failure_count,
                    "Latest crawl": event.crawl_id,
                    "Reason": event.reason,
                    "URL": event.context.get("url"),
                    "Exception": event.context.get("exception_class"),
                },
            )
        )

    async def reset_failure_count(self, slug: str) -> None:
        await self.store.forget(failures_key(slug))
