"""Price drop notifications."""

import logging
import time
from datetime import timedelta
from typing import Callable, Optional

from shelfwatch import metrics
from shelfwatch.config import settings
from shelfwatch.db.repositories import PriceAlertRepository, UserPriceAlert
from shelfwatch.events.events import PriceDropped
from shelfwatch.events.store import EventStore, StoredEvent
from shelfwatch.notify.sinks import Notification, NotificationSink, Severity
from shelfwatch.reliability.kv_store import KeyValueStore
from shelfwatch.reliability.reactors.base import Reactor

logger = logging.getLogger(__name__)


def calculate_drop_percentage(old_price_pence: int, new_price_pence: int) -> float:
    """
    Percentage drop from ``old_price_pence`` to ``new_price_pence``.

    Returns 0.0 when the price did not fall or the old price is not positive.
    """
    if old_price_pence <= 0:
        return 0.0
    drop = old_price_pence - new_price_pence
    if drop <= 0:
        return 0.0
    return round(drop / old_price_pence * 100, 2)


def format_pence(pence: int) -> str:
    return f"£{pence / 100:,.2f}"


class PriceDropReactor(Reactor):
    """
    Sends an operator alert for significant drops and personal alerts for
    users whose target price the new price meets.

    The two paths are independent: a drop below the global threshold can
    still satisfy a user's target.
    """

    name = "price_drop"

    def __init__(
        self,
        store: KeyValueStore,
        events: EventStore,
        alerts: PriceAlertRepository,
        sink: NotificationSink,
        user_sink: Optional[NotificationSink] = None,
        clock: Callable[[], float] = time.time,
        threshold_percent: Optional[float] = None,
        user_cooldown_hours: Optional[int] = None,
        claim_ttl_hours: Optional[float] = None,
    ):
        super().__init__(store, events, clock=clock, claim_ttl_hours=claim_ttl_hours)
        self.alerts = alerts
        self.sink = sink
        self.user_sink = user_sink or sink
        self.threshold_percent = (
            threshold_percent if threshold_percent is not None else settings.price_drop_alert_threshold_percent
        )
        self.user_cooldown_hours = (
            user_cooldown_hours if user_cooldown_hours is not None else settings.price_alert_cooldown_hours
        )

    async def on_price_dropped(self, stored: StoredEvent) -> None:
        event: PriceDropped = stored.event
        metrics.record_price_drop(event.retailer_name)
        await self.handle_threshold_notification(event)
        await self.notify_user_alerts(event)

    async def handle_threshold_notification(self, event: PriceDropped) -> bool:
        if event.drop_percentage < self.threshold_percent:
            logger.debug(
                f"Price drop of {event.drop_percentage}% on listing {event.product_listing_id} "
                f"below {self.threshold_percent}% threshold, skipping notification"
            )
            return False

        logger.info(
            f"Significant price drop on {event.product_title} at {event.retailer_name}: "
            f"{format_pence(event.old_price_pence)} -> {format_pence(event.new_price_pence)} "
            f"({event.drop_percentage}%)"
        )
        await self.sink.send(
            Notification(
                title=f"Price drop: {event.product_title}",
                message=f"{event.retailer_name} dropped the price by {event.drop_percentage}%",
                severity=Severity.INFO,
                url=event.product_url,
                fields={
                    "Retailer": event.retailer_name,
                    "Was": format_pence(event.old_price_pence),
                    "Now": format_pence(event.new_price_pence),
                    "Savings": format_pence(event.old_price_pence - event.new_price_pence),
                    "Drop": f"{event.drop_percentage}%",
                },
            )
        )
        return True

    async def notify_user_alerts(self, event: PriceDropped) -> int:
        now = self.now()
        alerts = await self.alerts.alerts_for_drop(
            event.product_listing_id,
            event.new_price_pence,
            notified_before=now - timedelta(hours=self.user_cooldown_hours),
        )
        for alert in alerts:
            await self.send_user_alert(alert, event)
            await self.alerts.mark_notified(alert.id, now)
        return len(alerts)

    async def send_user_alert(self, alert: UserPriceAlert, event: PriceDropped) -> None:
        await self.user_sink.send(
            Notification(
                title=f"Price alert: {event.product_title}",
                message=(
                    f"Now {format_pence(event.new_price_pence)} at {event.retailer_name}, "
                    f"at or below your target of {format_pence(alert.target_price_pence)}"
                ),
                url=event.product_url,
                webhook_url=alert.user_webhook_url,
                fields={"Retailer": event.retailer_name, "Target": format_pence(alert.target_price_pence)},
            )
        )
        logger.info(
            f"User price alert sent to user {alert.user_id} for product {alert.product_id} "
            f"(target {alert.target_price_pence}p, now {event.new_price_pence}p)"
        )
