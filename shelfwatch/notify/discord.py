"""Discord webhook integration for crawler and price alerts."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from shelfwatch import metrics
from shelfwatch.config import settings
from shelfwatch.notify.sinks import Notification, Severity

logger = logging.getLogger(__name__)

COLORS = {
    Severity.INFO: 0x00FF00,  # Green
    Severity.WARNING: 0xFFA500,  # Orange
    Severity.CRITICAL: 0xFF0000,  # Red
}


def format_embed(notification: Notification) -> Dict[str, Any]:
    """
    Format a notification as a Discord embed.

    Args:
        notification: Notification to render

    Returns:
        Discord webhook payload
    """
    embed: Dict[str, Any] = {
        "title": notification.title[:256],
        "description": notification.message[:4096],
        "color": COLORS[notification.severity],
        "fields": [
            {"name": str(name), "value": str(value)[:1024], "inline": True}
            for name, value in notification.fields.items()
            if value is not None
        ][:25],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if notification.url:
        embed["url"] = notification.url

    return {"embeds": [embed], "username": "Shelfwatch"}


class DiscordWebhookSink:
    """Discord webhook client for sending notifications."""

    channel = "discord"

    def __init__(self, webhook_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.discord_webhook_url
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def send(self, notification: Notification) -> None:
        url = notification.webhook_url or self.webhook_url
        if not url:
            logger.debug(f"No Discord webhook configured, dropping: {notification.title}")
            return

        client = await self._get_client()
        try:
            response = await client.post(url, json=format_embed(notification))
            response.raise_for_status()
            logger.info(f"Sent Discord notification: {notification.title}")
            metrics.record_notification(self.channel, True)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send Discord notification '{notification.title}': {e}")
            metrics.record_notification(self.channel, False)
