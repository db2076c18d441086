"""Pets at Home product and listing extraction rules."""

import re
from typing import Any, Dict, Optional

from shelfwatch.crawler.categories import category_extractor
from shelfwatch.crawler.crawler import RetailerDefinition
from shelfwatch.crawler.extractors import (
    DetailsRules,
    ListingRules,
    Page,
    ProductDetailsExtractor,
    ProductListingUrlExtractor,
    url_patterns,
)
from shelfwatch.crawler.json_ld import first_text, offers_list
from shelfwatch.crawler.reviews import ProductReviewsExtractor, ReviewRules
from shelfwatch.crawler.selectors import node_attr, select_first

NAME = "Pets at Home"
SLUG = "pets-at-home"
BASE_URL = "https://www.petsathome.com"

STARTING_URLS = (
    "https://www.petsathome.com/shop/en/pets/dog/dog-food",
    "https://www.petsathome.com/shop/en/pets/dog/dog-food/dry-dog-food",
    "https://www.petsathome.com/shop/en/pets/dog/dog-food/wet-dog-food",
    "https://www.petsathome.com/shop/en/pets/dog/dog-treats",
    "https://www.petsathome.com/shop/en/pets/dog/puppy/puppy-food",
)

# Product codes look like P71341 or 7136893P
PRODUCT_URL = r"petsathome\.com(?:/.*)?/product/[a-z0-9-]+/[A-Z0-9]+$"
_PRODUCT_CODE = re.compile(r"/product/[^/]+/([A-Z0-9]+)$", re.IGNORECASE)
_LISTING_CATEGORY = re.compile(r"/(dog|cat|puppy|kitten)-(food|treats|accessories)", re.IGNORECASE)
_LISTING_ANIMAL = re.compile(r"/(dog|cat|puppy|kitten)(?:/|$|\?)", re.IGNORECASE)

ID_SELECTORS = (
    ("[data-product-id]", "data-product-id"),
    ("[data-sku]", "data-sku"),
    ("[data-product-code]", "data-product-code"),
    ('input[name="product_id"]', "value"),
)


def external_id(page: Page) -> Optional[str]:
    match = _PRODUCT_CODE.search(page.url)
    if match:
        return match.group(1)

    sku = first_text(page.json_ld.get("sku"))
    if sku:
        return sku

    offers = offers_list(page.json_ld)
    if offers and first_text(offers[0].get("sku")):
        return first_text(offers[0].get("sku"))

    for selector, attribute in ID_SELECTORS:
        value = node_attr(select_first(page.tree, [selector], "product id"), attribute)
        if value:
            return value
    return None


def category(page: Page) -> Optional[str]:
    return category_extractor.from_breadcrumbs(page.tree) or category_extractor.from_url(page.url)


def rating_metadata(page: Page) -> Dict[str, Any]:
    rating = page.json_ld.get("aggregateRating")
    rating = rating if isinstance(rating, dict) else {}
    return {
        "rating_value": rating.get("ratingValue"),
        "review_count": rating.get("reviewCount"),
    }


def listing_category(product_url: str, source_url: str) -> Optional[str]:
    match = _LISTING_CATEGORY.search(source_url)
    if match:
        return f"{match.group(1).lower()}-{match.group(2).lower()}"
    match = _LISTING_ANIMAL.search(source_url)
    if match:
        return match.group(1).lower()
    return None


DETAILS_RULES = DetailsRules(
    retailer=SLUG,
    can_handle=url_patterns(PRODUCT_URL),
    title_selectors=(
        'h1[data-testid="product-title"]',
        "h1.product-title",
        ".product-name h1",
        ".pdp-title",
        "[data-product-title]",
        "h1",
    ),
    price_selectors=(
        '[data-testid="product-price"]',
        ".product-price",
        ".price-current",
        "[data-price]",
        ".pdp-price",
        ".price",
    ),
    original_price_selectors=(
        ".was-price",
        ".price-was",
        ".original-price",
        ".price-rrp",
        "[data-original-price]",
        "s.price",
        "del.price",
    ),
    description_selectors=(
        '[data-testid="product-description"]',
        ".product-description",
        ".pdp-description",
        "#product-description",
    ),
    image_selectors=(
        ".product-image img",
        ".gallery img",
        "[data-product-image]",
        ".pdp-image img",
        ".product-gallery img",
    ),
    brand_selectors=(
        '[data-testid="product-brand"]',
        ".product-brand",
        ".brand-name",
        "[data-brand]",
        'a[href*="/brands/"]',
    ),
    weight_selectors=(
        ".product-weight",
        "[data-weight]",
        ".weight-selector .selected",
        ".product-size",
    ),
    ingredients_selectors=(
        '[data-testid="ingredients"]',
        ".ingredients",
        "[data-ingredients]",
        ".product-ingredients",
        "#ingredients",
        ".composition",
    ),
    out_of_stock_selectors=(
        ".out-of-stock",
        '[data-stock-status="out"]',
        ".sold-out",
        '[data-testid="out-of-stock"]',
    ),
    in_stock_selectors=(
        ".in-stock",
        '[data-stock-status="in"]',
        '[data-testid="in-stock"]',
    ),
    known_brands=("Royal Canin", "Hill's Science Plan", "James Wellbeloved", "Wainwright's"),
    external_id=external_id,
    category=category,
    extra_metadata=rating_metadata,
)

LISTING_RULES = ListingRules(
    retailer=SLUG,
    can_handle=lambda url: "petsathome.com" in url and "/product/" not in url,
    is_product_url=url_patterns(r"/product/[a-z0-9-]+/[A-Z0-9]+$"),
    link_selectors=('a[href*="/product/"]',),
    category=listing_category,
    supports_pagination=True,
)

REVIEW_RULES = ReviewRules(
    retailer=SLUG,
    can_handle=url_patterns(PRODUCT_URL),
    review_selectors=(".review-item", ".bv-content-review", '[itemprop="review"]'),
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
