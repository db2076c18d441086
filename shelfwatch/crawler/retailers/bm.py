"""B&M Stores extraction rules.

B&M encodes the category in product URLs, so listing records take their
category from the product URL and only fall back to the listing page.
"""

from typing import Optional

from shelfwatch.crawler.categories import category_extractor
from shelfwatch.crawler.crawler import RetailerDefinition
from shelfwatch.crawler.extractors import (
    DetailsRules,
    ListingRules,
    ProductDetailsExtractor,
    ProductListingUrlExtractor,
    url_patterns,
)
from shelfwatch.crawler.urls import host_of, strip_query_and_fragment

NAME = "B&M"
SLUG = "bm"
BASE_URL = "https://www.bmstores.co.uk"

STARTING_URLS = (
    "https://www.bmstores.co.uk/pets/dog-food",
    "https://www.bmstores.co.uk/pets/dog-treats",
    "https://www.bmstores.co.uk/pets/puppy-food",
)

HOSTS = ("bmstores.co.uk", "www.bmstores.co.uk")

is_product_url = url_patterns(r"/product/", r"/p/\d+", r"/pd/[a-z0-9-]+")


def is_bm_page(url: str) -> bool:
    return host_of(url) in HOSTS


def listing_category(product_url: str, source_url: str) -> Optional[str]:
    return category_extractor.from_url(product_url) or category_extractor.from_url(source_url)


DETAILS_RULES = DetailsRules(
    retailer=SLUG,
    can_handle=lambda url: is_bm_page(url) and is_product_url(url),
    title_selectors=("h1.product-title", "h1[itemprop='name']", "h1"),
    price_selectors=(".product-price", "[itemprop='price']", "[data-price]", ".price"),
    original_price_selectors=(".product-price-was", ".was-price", "[data-original-price]"),
    description_selectors=(".product-description", "[itemprop='description']"),
    image_selectors=(".product-gallery img", ".product-image img"),
    brand_selectors=("[itemprop='brand']", ".product-brand"),
    weight_selectors=(".product-size", ".product-weight"),
    out_of_stock_selectors=(".out-of-stock", ".product-unavailable"),
    in_stock_selectors=(".in-stock",),
    add_to_cart_selectors=(".add-to-basket", "button[name='add-to-basket']"),
    brand_skip_words=frozenset({"bm", "value"}),
    combine_two_word_brands=False,
    breadcrumb_selectors=(".breadcrumbs a", ".breadcrumb a"),
)

LISTING_RULES = ListingRules(
    retailer=SLUG,
    can_handle=lambda url: is_bm_page(url) and not is_product_url(url),
    is_product_url=lambda url: is_bm_page(url) and is_product_url(url),
    link_selectors=("a[href]",),
    canonicalize=strip_query_and_fragment,
    category=listing_category,
    supports_pagination=True,
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
    request_delay_ms=2000,
)
