"""Tests for the SQL repositories."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from shelfwatch.db.models import PriceAlert, Product, ProductListing, ProductListingLink, Retailer, User
from shelfwatch.db.repositories import SqlPriceAlertRepository, SqlRetailerRepository
from shelfwatch.reliability.retailer_status import RetailerStatus

NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest.mark.asyncio
async def test_retailer_round_trip(session_factory):
    async with session_factory() as db:
        db.add(Retailer(slug="asda", name="Asda"))
        await db.commit()

    repo = SqlRetailerRepository(session_factory)
    assert await repo.get("missing") is None

    record = await repo.get("asda")
    assert record.status is RetailerStatus.ACTIVE
    assert record.consecutive_failures == 0

    record.status = RetailerStatus.DEGRADED
    record.consecutive_failures = 5
    record.last_failure_at = NOW
    await repo.save(record)

    saved = await repo.get("asda")
    assert saved.status is RetailerStatus.DEGRADED
    assert saved.consecutive_failures == 5
    assert saved.last_failure_at == NOW


@pytest_asyncio.fixture
async def alert_data(session_factory):
    async with session_factory() as db:
        retailer = Retailer(slug="asda", name="Asda")
        db.add(retailer)
        await db.flush()
        listing = ProductListing(retailer_id=retailer.id, url="https://groceries.asda.com/product/910001")
        product = Product(name="Pedigree Adult 12kg")
        other = Product(name="Something else")
        alice = User(email="alice@example.com", discord_webhook_url="https://discord.example/hook")
        bob = User(email="bob@example.com")
        db.add_all([listing, product, other, alice, bob])
        await db.flush()
        db.add(ProductListingLink(product_id=product.id, product_listing_id=listing.id))
        db.add_all(
            [
                PriceAlert(user_id=alice.id, product_id=product.id, target_price_pence=2500),
                PriceAlert(user_id=bob.id, product_id=product.id, target_price_pence=2000),
                PriceAlert(user_id=bob.id, product_id=product.id, target_price_pence=3000, is_active=False),
                PriceAlert(
                    user_id=bob.id,
                    product_id=product.id,
                    target_price_pence=3000,
                    last_notified_at=NOW - timedelta(hours=1),
                ),
                PriceAlert(user_id=alice.id, product_id=other.id, target_price_pence=9999),
            ]
        )
        await db.commit()
        return listing.id


@pytest.mark.asyncio
async def test_alerts_for_drop(session_factory, alert_data):
    repo = SqlPriceAlertRepository(session_factory)

    alerts = await repo.alerts_for_drop(alert_data, 2400, notified_before=NOW - timedelta(hours=24))
    assert [a.user_email for a in alerts] == ["alice@example.com"]
    assert alerts[0].user_webhook_url == "https://discord.example/hook"
    assert alerts[0].target_price_pence == 2500

    # The recently notified alert becomes eligible once the cooldown has passed
    alerts = await repo.alerts_for_drop(alert_data, 2400, notified_before=NOW)
    assert [a.target_price_pence for a in alerts] == [2500, 3000]

    await repo.mark_notified(alerts[0].id, NOW)
    alerts = await repo.alerts_for_drop(alert_data, 2400, notified_before=NOW)
    assert [a.target_price_pence for a in alerts] == [3000]
