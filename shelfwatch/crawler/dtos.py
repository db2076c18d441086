"""Records emitted by extractors."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class ProductDetails:
    """Product data extracted from a single product page.

    Prices are integer pence. ``price_pence == 0`` means the price could not
    be resolved; there is no notion of a free product.
    """

    title: str
    price_pence: int
    description: Optional[str] = None
    brand: Optional[str] = None
    original_price_pence: Optional[int] = None
    currency: str = "GBP"
    weight_grams: Optional[int] = None
    quantity: Optional[int] = None
    images: tuple[str, ...] = ()
    ingredients: Optional[str] = None
    nutritional_info: Optional[dict[str, Any]] = None
    in_stock: bool = True
    stock_quantity: Optional[int] = None
    external_id: Optional[str] = None
    category: Optional[str] = None
    barcode: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_discount(self) -> bool:
        return (
            self.original_price_pence is not None
            and self.original_price_pence > self.price_pence
        )

    @property
    def discount_percentage(self) -> Optional[float]:
        """Discount against the original price, rounded to 2 dp."""
        if not self.has_discount:
            return None
        saving = self.original_price_pence - self.price_pence
        return round(saving / self.original_price_pence * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["images"] = list(self.images)
        return data


@dataclass(frozen=True)
class ProductListingUrl:
    """A product page URL discovered on a listing page."""

    url: str
    retailer: str
    category: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PaginatedUrl:
    """The next listing page discovered from the current one."""

    url: str
    retailer: str
    page: int
    category: Optional[str] = None
    discovered_from: Optional[str] = None

    def __post_init__(self):
        if self.page < 1:
            raise ValueError(f"Page number must be positive, got {self.page}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProductReview:
    """A customer review scraped from a product page."""

    external_id: str
    rating: float
    body: str
    author: Optional[str] = None
    title: Optional[str] = None
    verified_purchase: bool = False
    review_date: Optional[datetime] = None
    helpful_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["review_date"] = self.review_date.isoformat() if self.review_date else None
        return data
