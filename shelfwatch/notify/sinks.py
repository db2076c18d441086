"""Notification sinks for operator and user alerts."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

from shelfwatch import metrics

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Notification:
    title: str
    message: str
    severity: Severity = Severity.INFO
    fields: Dict[str, Any] = field(default_factory=dict)
    url: Optional[str] = None
    # Delivery override, e.g. a user's own webhook
    webhook_url: Optional[str] = None


class NotificationSink(Protocol):
    """Fire-and-forget delivery. Implementations log failures, never raise."""

    async def send(self, notification: Notification) -> None: ...


_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
}


class LoggingSink:
    """Writes notifications to the application log."""

    channel = "log"

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    async def send(self, notification: Notification) -> None:
        self.log.log(
            _LEVELS[notification.severity],
            f"{notification.title}: {notification.message}",
            extra={"notification": {**notification.fields, "url": notification.url}},
        )
        metrics.record_notification(self.channel, True)


class FanoutSink:
    """Sends each notification to every configured sink."""

    def __init__(self, sinks: Sequence[NotificationSink]):
        self.sinks: List[NotificationSink] = list(sinks)

    async def send(self, notification: Notification) -> None:
        for sink in self.sinks:
            await sink.send(notification)
