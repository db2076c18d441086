"""Price history for product listings."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from shelfwatch.crawler.dtos import ProductDetails
from shelfwatch.db.models import ListingPrice, ProductListing, Retailer, utcnow
from shelfwatch.events.events import PriceDropped
from shelfwatch.events.store import EventStore
from shelfwatch.reliability.reactors.price_drop import calculate_drop_percentage

logger = logging.getLogger(__name__)


async def upsert_listing(db: AsyncSession, retailer_slug: str, url: str) -> ProductListing:
    """
    Get or create the listing for ``url`` at a retailer.

    Raises:
        ValueError: If the retailer does not exist
    """
    retailer = (await db.execute(select(Retailer).where(Retailer.slug == retailer_slug))).scalar_one_or_none()
    if retailer is None:
        raise ValueError(f"Unknown retailer: {retailer_slug}")

    result = await db.execute(
        select(ProductListing).where(ProductListing.retailer_id == retailer.id, ProductListing.url == url)
    )
    listing = result.scalar_one_or_none()
    if listing is None:
        listing = ProductListing(retailer_id=retailer.id, url=url)
        db.add(listing)
        await db.flush()
        logger.info(f"New listing for {retailer_slug}: {url}")
    return listing


class PriceHistoryRecorder:
    """
    Stores a price point per extraction and emits ``PriceDropped`` when the
    price falls below the last known price.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], events: EventStore):
        self.session_factory = session_factory
        self.events = events

    async def record(self, listing_id: int, details: ProductDetails) -> Optional[PriceDropped]:
        """
        Record extracted details for a listing.

        Args:
            listing_id: Product listing ID
            details: Extracted product details

        Returns:
            The PriceDropped event appended, if any

        Raises:
            ValueError: If the listing does not exist
        """
        async with self.session_factory() as db:
            listing = await db.get(
                ProductListing, listing_id, options=[selectinload(ProductListing.retailer)]
            )
            if listing is None:
                raise ValueError(f"Unknown product listing: {listing_id}")

            previous_price = listing.price_pence
            listing.title = details.title
            listing.brand = details.brand or listing.brand
            listing.category = details.category or listing.category
            listing.barcode = details.barcode or listing.barcode
            listing.external_id = details.external_id or listing.external_id
            listing.in_stock = details.in_stock
            listing.last_scraped_at = utcnow()

            if details.price_pence <= 0:
                # No price was found on the page; keep the last known one
                logger.warning(f"No price extracted for listing {listing_id}, not recording history")
                await db.commit()
                return None

            listing.price_pence = details.price_pence
            listing.original_price_pence = details.original_price_pence
            db.add(
                ListingPrice(
                    product_listing_id=listing.id,
                    price_pence=details.price_pence,
                    original_price_pence=details.original_price_pence,
                    currency=details.currency,
                    in_stock=details.in_stock,
                )
            )
            retailer_name = listing.retailer.name
            url = listing.url
            await db.commit()

        if previous_price is None or previous_price <= details.price_pence:
            return None

        event = PriceDropped(
            product_listing_id=listing_id,
            product_title=details.title,
            retailer_name=retailer_name,
            product_url=url,
            old_price_pence=previous_price,
            new_price_pence=details.price_pence,
            drop_percentage=calculate_drop_percentage(previous_price, details.price_pence),
        )
        logger.info(
            f"Price drop on listing {listing_id}: {previous_price}p -> {details.price_pence}p "
            f"({event.drop_percentage}%)"
        )
        await self.events.append(f"listing-{listing_id}", [event])
        return event
