"""SQLAlchemy database models."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class StoredEventRecord(Base):
    """Append-only event log."""

    __tablename__ = "stored_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    aggregate_uuid: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_class: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_properties: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Retailer(Base):
    """Crawlable retailer and its operational status."""

    __tablename__ = "retailers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    base_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_failure_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    paused_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    listings: Mapped[list["ProductListing"]] = relationship(
        "ProductListing", back_populates="retailer", cascade="all, delete-orphan"
    )


class ProductListing(Base):
    """A product page at one retailer."""

    __tablename__ = "product_listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    retailer_id: Mapped[int] = mapped_column(Integer, ForeignKey("retailers.id"), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    barcode: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)
    price_pence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    original_price_pence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    in_stock: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_scraped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    retailer: Mapped["Retailer"] = relationship("Retailer", back_populates="listings")
    prices: Mapped[list["ListingPrice"]] = relationship(
        "ListingPrice", back_populates="listing", cascade="all, delete-orphan"
    )
    products: Mapped[list["Product"]] = relationship(
        "Product", secondary="product_listing_links", back_populates="listings"
    )

    __table_args__ = (UniqueConstraint("retailer_id", "url", name="uq_listing_retailer_url"),)


class Product(Base):
    """Canonical product that listings from several retailers are matched to."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    barcode: Mapped[Optional[str]] = mapped_column(String(14), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    listings: Mapped[list["ProductListing"]] = relationship(
        "ProductListing", secondary="product_listing_links", back_populates="products"
    )
    alerts: Mapped[list["PriceAlert"]] = relationship(
        "PriceAlert", back_populates="product", cascade="all, delete-orphan"
    )


class ProductListingLink(Base):
    """Match between a canonical product and a retailer listing."""

    __tablename__ = "product_listing_links"

    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    product_listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("product_listings.id", ondelete="CASCADE"), primary_key=True
    )


class ListingPrice(Base):
    """Price history for listings."""

    __tablename__ = "listing_prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("product_listings.id"), nullable=False, index=True
    )
    price_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    original_price_pence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="GBP", nullable=False)
    in_stock: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    listing: Mapped["ProductListing"] = relationship("ProductListing", back_populates="prices")


class User(Base):
    """User who can set price alerts."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    discord_webhook_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    alerts: Mapped[list["PriceAlert"]] = relationship(
        "PriceAlert", back_populates="user", cascade="all, delete-orphan"
    )


class PriceAlert(Base):
    """A user's target price for a canonical product."""

    __tablename__ = "price_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id"), nullable=False)
    target_price_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="alerts")
    product: Mapped["Product"] = relationship("Product", back_populates="alerts")
