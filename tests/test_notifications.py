"""Tests for notification sinks."""

import json
import logging

import httpx
import pytest

from shelfwatch.notify.discord import COLORS, DiscordWebhookSink, format_embed
from shelfwatch.notify.sinks import FanoutSink, LoggingSink, Notification, Severity

WEBHOOK = "https://discord.com/api/webhooks/1/abc"


def test_format_embed():
    notification = Notification(
        title="Crawler failing: Tesco",
        message="x" * 5000,
        severity=Severity.CRITICAL,
        fields={"Failures": 3, "URL": None},
        url="https://www.tesco.com",
    )
    payload = format_embed(notification)
    [embed] = payload["embeds"]

    assert payload["username"] == "Shelfwatch"
    assert embed["color"] == COLORS[Severity.CRITICAL]
    assert len(embed["description"]) == 4096
    assert embed["fields"] == [{"name": "Failures", "value": "3", "inline": True}]
    assert embed["url"] == "https://www.tesco.com"


@pytest.mark.asyncio
async def test_discord_posts_to_override_webhook():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    sink = DiscordWebhookSink(WEBHOOK, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await sink.send(Notification(title="Price alert", message="Now £5.00"))
    await sink.send(Notification(title="Price alert", message="Now £5.00", webhook_url="https://user.example/hook"))

    assert [str(r.url) for r in requests] == [WEBHOOK, "https://user.example/hook"]
    assert json.loads(requests[0].content)["embeds"][0]["title"] == "Price alert"
    await sink.close()


@pytest.mark.asyncio
async def test_discord_failures_are_logged_not_raised(caplog):
    sink = DiscordWebhookSink(
        WEBHOOK, client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    )
    with caplog.at_level(logging.ERROR):
        await sink.send(Notification(title="Price alert", message="Now £5.00"))
    assert "Failed to send Discord notification" in caplog.text


@pytest.mark.asyncio
async def test_discord_without_webhook_is_a_no_op():
    def handler(request):
        raise AssertionError("no request expected")

    sink = DiscordWebhookSink("", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await sink.send(Notification(title="Price alert", message="Now £5.00"))


@pytest.mark.asyncio
async def test_logging_and_fanout(caplog, sink):
    fanout = FanoutSink([LoggingSink(), sink])
    with caplog.at_level(logging.INFO):
        await fanout.send(Notification(title="Crawler failing", message="3 failures", severity=Severity.CRITICAL))

    assert len(sink.sent) == 1
    [record] = [r for r in caplog.records if "Crawler failing" in r.getMessage()]
    assert record.levelno == logging.ERROR
