"""Narrow repositories the reactors and jobs read and write through."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfwatch.db.models import PriceAlert, ProductListingLink, Retailer, User
from shelfwatch.reliability.retailer_status import RetailerRecord, RetailerStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserPriceAlert:
    """An active alert matched against a price drop."""

    id: int
    user_id: int
    product_id: int
    target_price_pence: int
    user_email: str
    user_webhook_url: Optional[str] = None
    last_notified_at: Optional[datetime] = None


class RetailerRepository(Protocol):
    async def get(self, slug: str) -> Optional[RetailerRecord]: ...

    async def save(self, record: RetailerRecord) -> None: ...


class PriceAlertRepository(Protocol):
    async def alerts_for_drop(
        self, product_listing_id: int, new_price_pence: int, notified_before: datetime
    ) -> List[UserPriceAlert]: ...

    async def mark_notified(self, alert_id: int, at: datetime) -> None: ...


class SqlRetailerRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, slug: str) -> Optional[RetailerRecord]:
        async with self.session_factory() as db:
            result = await db.execute(select(Retailer).where(Retailer.slug == slug))
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return RetailerRecord(
            slug=row.slug,
            name=row.name,
            status=RetailerStatus(row.status),
            consecutive_failures=row.consecutive_failures,
            last_failure_at=row.last_failure_at,
            paused_until=row.paused_until,
        )

    async def save(self, record: RetailerRecord) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(Retailer)
                .where(Retailer.slug == record.slug)
                .values(
                    status=record.status.value,
                    consecutive_failures=record.consecutive_failures,
                    last_failure_at=record.last_failure_at,
                    paused_until=record.paused_until,
                )
            )
            await db.commit()


class SqlPriceAlertRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def alerts_for_drop(
        self, product_listing_id: int, new_price_pence: int, notified_before: datetime
    ) -> List[UserPriceAlert]:
        """
        Active alerts on products linked to the listing whose target the new
        price meets, excluding alerts notified since ``notified_before``.
        """
        async with self.session_factory() as db:
            product_ids = select(ProductListingLink.product_id).where(
                ProductListingLink.product_listing_id == product_listing_id
            )
            result = await db.execute(
                select(PriceAlert, User)
                .join(User, PriceAlert.user_id == User.id)
                .where(
                    PriceAlert.product_id.in_(product_ids),
                    PriceAlert.is_active.is_(True),
                    PriceAlert.target_price_pence >= new_price_pence,
                    or_(
                        PriceAlert.last_notified_at.is_(None),
                        PriceAlert.last_notified_at < notified_before,
                    ),
                )
                .order_by(PriceAlert.id)
            )
            rows = result.all()

        return [
            UserPriceAlert(
                id=alert.id,
                user_id=alert.user_id,
                product_id=alert.product_id,
                target_price_pence=alert.target_price_pence,
                user_email=user.email,
                user_webhook_url=user.discord_webhook_url,
                last_notified_at=alert.last_notified_at,
            )
            for alert, user in rows
        ]

    async def mark_notified(self, alert_id: int, at: datetime) -> None:
        async with self.session_factory() as db:
            await db.execute(update(PriceAlert).where(PriceAlert.id == alert_id).values(last_notified_at=at))
            await db.commit()
