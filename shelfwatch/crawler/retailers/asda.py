"""Asda Groceries extraction rules.

Asda listing pages are largely client-rendered, so product ids are also
mined from inline state scripts and products are deduplicated by their
numeric id rather than by URL.
"""

import re
from typing import Optional

from shelfwatch.crawler.crawler import RetailerDefinition
from shelfwatch.crawler.extractors import (
    DetailsRules,
    ListingRules,
    Page,
    ProductDetailsExtractor,
    ProductListingUrlExtractor,
    url_patterns,
)
from shelfwatch.crawler.urls import host_of, strip_query_and_fragment

NAME = "Asda"
SLUG = "asda"
BASE_URL = "https://groceries.asda.com"

STARTING_URLS = (
    "https://groceries.asda.com/aisle/pet-shop/dog/dog-food",
    "https://groceries.asda.com/aisle/pet-shop/dog/dog-food/dry-dog-food",
    "https://groceries.asda.com/aisle/pet-shop/dog/dog-food/wet-dog-food",
    "https://groceries.asda.com/aisle/pet-shop/dog/dog-treats",
)

LISTING_PATH_MARKERS = ("/aisle/", "/shelf/", "/search/", "/super-department/")

_PRODUCT_ID = re.compile(r"/product/(?:[a-z0-9-]+/)?(\d+)(?:/|$|\?)", re.IGNORECASE)
_PRODUCT_ID_PARAM = re.compile(r"[?&]productId=(\d+)", re.IGNORECASE)
SCRIPT_PRODUCT_ID = re.compile(r'"(?:productId|skuId)"\s*:\s*"(\d+)"')


def product_id(url: str) -> Optional[str]:
    """Numeric Asda product id from a product URL."""
    match = _PRODUCT_ID.search(url) or _PRODUCT_ID_PARAM.search(url)
    return match.group(1) if match else None


def is_listing_page(url: str) -> bool:
    return host_of(url) == "groceries.asda.com" and any(m in url for m in LISTING_PATH_MARKERS)


def is_product_url(url: str) -> bool:
    return "/product/" in url and product_id(url) is not None


def external_id(page: Page) -> Optional[str]:
    return product_id(page.url) or (str(page.json_ld["sku"]) if page.json_ld.get("sku") else None)


DETAILS_RULES = DetailsRules(
    retailer=SLUG,
    can_handle=url_patterns(r"groceries\.asda\.com/product/"),
    title_selectors=('h1[data-auto-id="pdpTitle"]', "h1.pdp-main-details__title", "h1"),
    price_selectors=(
        '[data-auto-id="pdpPrice"]',
        ".pdp-main-details__price",
        ".co-product__price",
        "[data-price]",
    ),
    original_price_selectors=(".co-product__was-price", ".pdp-main-details__was-price", "[data-original-price]"),
    description_selectors=(".pdp-description-reviews__product-details-cntr", ".pdp-description"),
    image_selectors=(".asda-image img", ".pdp-main-details__image img"),
    brand_selectors=('[data-auto-id="pdpBrand"]', ".pdp-main-details__brand"),
    weight_selectors=(".pdp-main-details__weight", ".co-product__volume"),
    ingredients_selectors=(".pdp-description-reviews__ingredients", '[data-auto-id="ingredients"]'),
    out_of_stock_selectors=(".co-product__out-of-stock", '[data-auto-id="outOfStock"]'),
    add_to_cart_selectors=('[data-auto-id="addButton"]', ".co-quantity__add-btn"),
    brand_skip_words=frozenset({"asda", "extra", "special"}),
    external_id=external_id,
)

LISTING_RULES = ListingRules(
    retailer=SLUG,
    can_handle=is_listing_page,
    is_product_url=is_product_url,
    link_selectors=(
        'a[href*="/product/"]',
        '[data-auto-id="linkProductDetail"]',
        ".co-product__anchor",
        ".product-tile a",
    ),
    canonicalize=strip_query_and_fragment,
    product_key=product_id,
    script_id_pattern=SCRIPT_PRODUCT_ID,
    script_url_template=BASE_URL + "/product/{id}",
)

RETAILER = RetailerDefinition(
    name=NAME,
    slug=SLUG,
    base_url=BASE_URL,
    starting_urls=STARTING_URLS,
    extractors=(
        ProductDetailsExtractor(DETAILS_RULES),
        ProductListingUrlExtractor(LISTING_RULES),
    ),
)
