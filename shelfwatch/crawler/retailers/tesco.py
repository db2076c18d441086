"""Tesco Groceries extraction rules."""

import re
from typing import Any, Dict, Optional

from shelfwatch.crawler.crawler import RetailerDefinition
from shelfwatch.crawler.extractors import (
    DetailsRules,
    ListingRules,
    Page,
    ProductDetailsExtractor,
    ProductListingUrlExtractor,
    price_from_element,
    url_patterns,
)
from shelfwatch.crawler.reviews import ProductReviewsExtractor, ReviewRules
from shelfwatch.crawler.selectors import node_text, select_first
from shelfwatch.crawler.urls import strip_query_and_fragment

NAME = "Tesco"
SLUG = "tesco"
BASE_URL = "https://www.tesco.com"

STARTING_URLS = (
    "https://www.tesco.com/groceries/en-GB/shop/pets/dog-food-and-treats/all",
    "https://www.tesco.com/groceries/en-GB/shop/pets/dog-food-and-treats/dry-dog-food",
    "https://www.tesco.com/groceries/en-GB/shop/pets/dog-food-and-treats/wet-dog-food",
    "https://www.tesco.com/groceries/en-GB/shop/pets/dog-food-and-treats/dog-treats",
)

PRODUCT_URL = r"tesco\.com/groceries/en-GB/products/\d+"
_PRODUCT_ID = re.compile(r"/groceries/en-GB/products/(\d+)")

CLUBCARD_PRICE_SELECTORS = (
    '[data-auto="clubcard-price-value"]',
    ".clubcard-price__value",
    ".offer-price--clubcard",
    '[data-testid="clubcard-price"]',
    ".beans-price--clubcard .beans-price__text",
)

PROMOTION_SELECTORS = (
    '[data-auto="offer-text"]',
    ".offer-text",
    ".promotions-offer-text",
)


def product_id(url: str) -> Optional[str]:
    match = _PRODUCT_ID.search(url)
    return match.group(1) if match else None


def external_id(page: Page) -> Optional[str]:
    return product_id(page.url) or (str(page.json_ld["sku"]) if page.json_ld.get("sku") else None)


def loyalty_metadata(page: Page) -> Dict[str, Any]:
    """Clubcard price and promotion text, when shown."""
    node = select_first(
        page.tree,
        CLUBCARD_PRICE_SELECTORS,
        "clubcard price",
        accept=lambda n: price_from_element(n) is not None,
    )
    return {
        "clubcard_price_pence": price_from_element(node) if node is not None else None,
        "promotion": node_text(select_first(page.tree, PROMOTION_SELECTORS, "promotion")),
    }


DETAILS_RULES = DetailsRules(
    retailer=SLUG,
    can_handle=url_patterns(PRODUCT_URL),
    title_selectors=('h1[data-auto="pdp-product-title"]', "h1.product-details-tile__title", "h1"),
    price_selectors=(
        '[data-auto="price-value"]',
        ".price-per-sellable-unit .value",
        ".beans-price__text",
        "[data-price]",
    ),
    original_price_selectors=(".price-was", ".beans-price--was .beans-price__text", "[data-original-price]"),
    description_selectors=('[data-auto="pdp-product-description"]', "#product-description", ".product-info-block__content"),
    image_selectors=(".product-image img", '[data-auto="pdp-product-image"] img', ".product-image__container img"),
    brand_selectors=('[data-auto="pdp-brand"]', ".product-brand"),
    weight_selectors=('[data-auto="pdp-net-contents"]', ".product-info-block--net-contents"),
    ingredients_selectors=("#ingredients", '[data-auto="pdp-ingredients"]', ".product-info-block--ingredients"),
    out_of_stock_selectors=('[data-auto="unavailable-message"]', ".product-info-message--unavailable"),
    add_to_cart_selectors=('[data-auto="ddsweb-quantity-controls-add-button"]', "button.add-control"),
    known_brands=("Purina ONE", "Pedigree", "Bakers", "Winalot", "Harringtons", "Butcher's", "Cesar"),
    brand_skip_words=frozenset({"tesco", "finest", "everyday"}),
    external_id=external_id,
    extra_metadata=loyalty_metadata,
)

LISTING_RULES = ListingRules(
    retailer=SLUG,
    can_handle=url_patterns(r"tesco\.com/groceries/en-GB/(?:shop|search)"),
    is_product_url=url_patterns(PRODUCT_URL),
    link_selectors=('a[href*="/products/"]',),
    canonicalize=strip_query_and_fragment,
    product_key=product_id,
    supports_pagination=True,
)

REVIEW_RULES = ReviewRules(
    retailer=SLUG,
    can_handle=url_patterns(PRODUCT_URL),
    review_selectors=('[data-auto="review-container"]', ".review"),
)

RETAILER = RetailerDefinition(
    name=NAME,
    slug=SLUG,
    base_url=BASE_URL,
    starting_urls=STARTING_URLS,
    extractors=(
        ProductDetailsExtractor(DETAILS_RULES),
        ProductListingUrlExtractor(LISTING_RULES),
        ProductReviewsExtractor(REVIEW_RULES),
    ),
)
