"""Rule-driven extraction pipelines shared by every retailer.

A retailer does not subclass anything here. It declares a
:class:`DetailsRules` or :class:`ListingRules` value (selector tables plus a
few optional hook functions) and hands it to :class:`ProductDetailsExtractor`
or :class:`ProductListingUrlExtractor`.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from selectolax.parser import HTMLParser, Node

from shelfwatch import metrics
from shelfwatch.crawler.barcode import extract_barcode
from shelfwatch.crawler.categories import category_extractor
from shelfwatch.crawler.dtos import PaginatedUrl, ProductDetails, ProductListingUrl
from shelfwatch.crawler.json_ld import (
    extract_product_json_ld,
    first_text,
    mine_script_ids,
    offers_list,
)
from shelfwatch.crawler.pagination import NEXT_PAGE_SELECTORS, find_next_page
from shelfwatch.crawler.parsing import (
    DEFAULT_QUANTITY_PATTERNS,
    extract_quantity,
    parse_price_to_pence,
    parse_weight,
)
from shelfwatch.crawler.selectors import (
    exists,
    node_attr,
    node_text,
    parse_html,
    select_all,
    select_first,
)
from shelfwatch.crawler.urls import is_navigable_href, normalize_url

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Product"

BRAND_SKIP_WORDS = frozenset({
    "the", "a", "an", "new", "best", "premium", "deluxe", "original",
    "natural", "organic", "pack", "size", "dog", "cat", "pet", "puppy",
    "kitten", "adult", "senior", "food", "treats", "dry", "wet", "complete",
})

IMAGE_ATTRIBUTES = ("src", "data-src", "data-lazy-src")
IMAGE_REJECT_MARKERS = ("placeholder", "loading", "data:")

_BRAND_START = re.compile(r"^[A-Z]")


@dataclass
class Page:
    """A parsed page handed to retailer hooks."""

    tree: HTMLParser
    url: str
    json_ld: Dict[str, Any] = field(default_factory=dict)


class Extractor(ABC):
    """A capability that turns one fetched page into records."""

    retailer: str

    @abstractmethod
    def can_handle(self, url: str) -> bool:
        """Whether this extractor applies to the URL."""
        pass

    @abstractmethod
    def extract(self, html: str, source_url: str) -> Iterator[Any]:
        """Lazily yield records found in the page."""
        pass

    @property
    def name(self) -> str:
        return type(self).__name__


class DetailsExtractor(Extractor):
    """Capability: HTML of a product page -> at most one ProductDetails."""


class ListingUrlExtractor(Extractor):
    """Capability: HTML of a listing page -> ProductListingUrl (+ PaginatedUrl)."""


def _matches_any(patterns: Sequence[re.Pattern]) -> Callable[[str], bool]:
    return lambda url: any(p.search(url) for p in patterns)


@dataclass
class DetailsRules:
    """Retailer-specific configuration for :class:`ProductDetailsExtractor`.

    Selector tuples are tried in order. Hooks are optional; ``None`` means
    the shared default behaviour.
    """

    retailer: str
    can_handle: Callable[[str], bool]
    title_selectors: Sequence[str] = ("h1",)
    price_selectors: Sequence[str] = ()
    original_price_selectors: Sequence[str] = ()
    description_selectors: Sequence[str] = ()
    image_selectors: Sequence[str] = ()
    brand_selectors: Sequence[str] = ()
    weight_selectors: Sequence[str] = ()
    ingredients_selectors: Sequence[str] = ()
    out_of_stock_selectors: Sequence[str] = ()
    in_stock_selectors: Sequence[str] = ()
    add_to_cart_selectors: Sequence[str] = ()
    breadcrumb_selectors: Sequence[str] = ()
    known_brands: Sequence[str] = ()
    brand_skip_words: frozenset[str] = frozenset()
    combine_two_word_brands: bool = True
    min_brand_length: int = 1
    quantity_patterns: Sequence[re.Pattern] = DEFAULT_QUANTITY_PATTERNS
    currency: str = "GBP"

    should_extract: Optional[Callable[[HTMLParser, str], bool]] = None
    external_id: Optional[Callable[[Page], Optional[str]]] = None
    category: Optional[Callable[[Page], Optional[str]]] = None
    brand_from_breadcrumbs: Optional[Callable[[Page], Optional[str]]] = None
    nutritional_info: Optional[Callable[[Page], Optional[Dict[str, Any]]]] = None
    barcode: Optional[Callable[[Page], Optional[str]]] = None
    extra_metadata: Optional[Callable[[Page], Dict[str, Any]]] = None
    normalize_image_url: Optional[Callable[[str, str], str]] = None


@dataclass
class ListingRules:
    """Retailer-specific configuration for :class:`ProductListingUrlExtractor`."""

    retailer: str
    can_handle: Callable[[str], bool]
    is_product_url: Callable[[str], bool]
    link_selectors: Sequence[str] = ("a[href]",)
    should_extract: Optional[Callable[[HTMLParser, str], bool]] = None
    # Rewrites a normalized URL into the retailer's canonical form
    canonicalize: Optional[Callable[[str], str]] = None
    # Identity used for the second dedup pass, e.g. a numeric SKU
    product_key: Optional[Callable[[str], Optional[str]]] = None
    # Category inference; receives (product_url, source_url)
    category: Optional[Callable[[str, str], Optional[str]]] = None
    supports_pagination: bool = False
    next_page_selectors: Sequence[str] = NEXT_PAGE_SELECTORS
    # Script-embedded discovery for client-rendered listings
    script_id_pattern: Optional[re.Pattern] = None
    script_url_template: Optional[str] = None


def price_from_element(node: Node) -> Optional[int]:
    """
    Read a price from an element, preferring machine-readable attributes.

    ``data-price`` / ``content`` win over ``data-original-price``, which wins
    over visible text. Zero or unparseable values count as missing.
    """
    for attribute in ("data-price", "content"):
        value = node_attr(node, attribute)
        if value is not None:
            pence = parse_price_to_pence(value)
            if pence:
                return pence
            break

    pence = parse_price_to_pence(node_attr(node, "data-original-price"))
    if pence:
        return pence

    pence = parse_price_to_pence(node_text(node))
    return pence or None


def original_price_from_element(node: Node) -> Optional[int]:
    pence = parse_price_to_pence(node_attr(node, "data-original-price"))
    if pence:
        return pence
    pence = parse_price_to_pence(node_text(node))
    return pence or None


def json_ld_price_to_pence(value: Any) -> Optional[int]:
    """Convert a JSON-LD ``price`` (number or numeric string) to pence."""
    if value is None or value == "":
        return None
    try:
        pence = (Decimal(str(value).strip()) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return parse_price_to_pence(str(value))
    return int(pence)


def json_ld_images(value: Any) -> List[str]:
    """Flatten the JSON-LD ``image`` property into URL strings."""
    if not value:
        return []
    items = value if isinstance(value, list) else [value]
    urls = []
    for item in items:
        if isinstance(item, str):
            urls.append(item)
        elif isinstance(item, dict):
            url = item.get("url") or item.get("contentUrl")
            if isinstance(url, str):
                urls.append(url)
    return urls


def is_usable_image_url(url: str) -> bool:
    lowered = url.lower()
    return not any(marker in lowered for marker in IMAGE_REJECT_MARKERS)


class ProductDetailsExtractor(DetailsExtractor):
    """
    Shared product-page pipeline.

    Structured data (JSON-LD Product) is parsed once and is the first
    source for every field it can provide; DOM selectors are consulted
    only for what it did not resolve. Missing fields never raise: title
    falls back to ``"Unknown Product"`` and price to ``0``.
    """

    def __init__(self, rules: DetailsRules):
        self.rules = rules
        self.retailer = rules.retailer
        self._skip_words = BRAND_SKIP_WORDS | {w.lower() for w in rules.brand_skip_words}

    def can_handle(self, url: str) -> bool:
        return self.rules.can_handle(url)

    def extract(self, html: str, source_url: str) -> Iterator[ProductDetails]:
        """
        Extract product details from a product page.

        Args:
            html: Raw page HTML
            source_url: URL the page was fetched from

        Yields:
            Exactly one ProductDetails, or nothing when the pre-check
            rejects the page
        """
        rules = self.rules
        tree = parse_html(html)

        if rules.should_extract is not None and not rules.should_extract(tree, source_url):
            logger.info(f"{self.retailer}: skipping extraction for {source_url}")
            metrics.record_extraction_skipped(self.retailer, self.name)
            return

        page = Page(tree=tree, url=source_url, json_ld=extract_product_json_ld(tree))

        title = self.extract_title(page)
        if title is None:
            logger.warning(f"{self.retailer}: could not extract title from {source_url}")
            metrics.record_field_miss(self.retailer, "title")
            title = UNKNOWN_TITLE

        price = self.extract_price(page)
        if price is None:
            logger.warning(f"{self.retailer}: could not extract price from {source_url}")
            metrics.record_field_miss(self.retailer, "price")
            price = 0

        details = ProductDetails(
            title=title,
            price_pence=price,
            description=self.extract_description(page),
            brand=self.extract_brand(page, title),
            original_price_pence=self.extract_original_price(page),
            currency=rules.currency,
            weight_grams=self.extract_weight(page, title),
            quantity=extract_quantity(title, rules.quantity_patterns),
            images=tuple(self.extract_images(page)),
            ingredients=node_text(select_first(tree, rules.ingredients_selectors, "ingredients")),
            nutritional_info=rules.nutritional_info(page) if rules.nutritional_info else None,
            in_stock=self.extract_in_stock(page),
            stock_quantity=self.extract_stock_quantity(page),
            external_id=self.extract_external_id(page),
            category=self.extract_category(page),
            barcode=rules.barcode(page) if rules.barcode else extract_barcode(tree, page.json_ld),
            metadata=self.build_metadata(page),
        )

        logger.info(f"{self.retailer}: extracted '{details.title}' ({details.price_pence}p) from {source_url}")
        yield details

    def extract_title(self, page: Page) -> Optional[str]:
        title = first_text(page.json_ld.get("name"))
        if title:
            return title
        return node_text(select_first(page.tree, self.rules.title_selectors, "title"))

    def extract_description(self, page: Page) -> Optional[str]:
        description = first_text(page.json_ld.get("description"))
        if description:
            return description
        return node_text(select_first(page.tree, self.rules.description_selectors, "description"))

    def extract_price(self, page: Page) -> Optional[int]:
        for offer in offers_list(page.json_ld):
            pence = json_ld_price_to_pence(offer.get("price"))
            if pence:
                return pence

        node = select_first(
            page.tree,
            self.rules.price_selectors,
            "price",
            accept=lambda n: price_from_element(n) is not None,
        )
        return price_from_element(node) if node is not None else None

    def extract_original_price(self, page: Page) -> Optional[int]:
        node = select_first(
            page.tree,
            self.rules.original_price_selectors,
            "original price",
            accept=lambda n: original_price_from_element(n) is not None,
        )
        return original_price_from_element(node) if node is not None else None

    def looks_like_brand(self, word: str) -> bool:
        """Capitalised, long enough and not a generic product word."""
        if not word or len(word) <= self.rules.min_brand_length:
            return False
        if word.lower() in self._skip_words:
            return False
        return bool(_BRAND_START.match(word))

    def brand_from_title(self, title: str) -> Optional[str]:
        if not title or title == UNKNOWN_TITLE:
            return None

        lowered = title.lower()
        for brand in self.rules.known_brands:
            if brand.lower() in lowered:
                return brand

        words = title.split()
        if len(words) < 2 or not self.looks_like_brand(words[0]):
            return None
        if self.rules.combine_two_word_brands and self.looks_like_brand(words[1]):
            return f"{words[0]} {words[1]}"
        return words[0]

    def extract_brand(self, page: Page, title: str) -> Optional[str]:
        """JSON-LD brand, then DOM, then breadcrumbs, then the title heuristic."""
        brand = first_text(page.json_ld.get("brand"))
        if brand:
            return brand

        node = select_first(page.tree, self.rules.brand_selectors, "brand")
        if node is not None:
            brand = node_text(node) or node_attr(node, "data-brand")
            if brand:
                return brand

        if self.rules.brand_from_breadcrumbs is not None:
            brand = self.rules.brand_from_breadcrumbs(page)
            if brand:
                return brand

        return self.brand_from_title(title)

    def extract_weight(self, page: Page, title: str) -> Optional[int]:
        for offer in offers_list(page.json_ld):
            name = offer.get("name")
            if isinstance(name, str):
                grams = parse_weight(name)
                if grams is not None:
                    return grams

        for node in select_all(page.tree, self.rules.weight_selectors, "weight"):
            grams = parse_weight(node_text(node) or node_attr(node, "data-weight"))
            if grams is not None:
                return grams

        if title and title != UNKNOWN_TITLE:
            return parse_weight(title)
        return None

    def extract_in_stock(self, page: Page) -> bool:
        """Structured availability wins; absent any signal, assume in stock."""
        for offer in offers_list(page.json_ld):
            availability = str(offer.get("availability") or "").lower()
            if "outofstock" in availability or "out_of_stock" in availability:
                return False
            if "instock" in availability or "in_stock" in availability:
                return True

        tree = page.tree
        if exists(tree, self.rules.out_of_stock_selectors, "out of stock"):
            return False
        if exists(tree, self.rules.in_stock_selectors, "in stock"):
            return True
        if exists(tree, self.rules.add_to_cart_selectors, "add to cart"):
            return True
        return True

    def extract_stock_quantity(self, page: Page) -> Optional[int]:
        for offer in offers_list(page.json_ld):
            level = offer.get("inventoryLevel")
            if isinstance(level, dict):
                level = level.get("value")
            if level is None:
                continue
            try:
                return int(level)
            except (TypeError, ValueError):
                continue
        return None

    def extract_images(self, page: Page) -> List[str]:
        normalize = self.rules.normalize_image_url or normalize_url
        candidates = json_ld_images(page.json_ld.get("image"))

        for selector in self.rules.image_selectors:
            for node in select_all(page.tree, [selector], "image"):
                for attribute in IMAGE_ATTRIBUTES:
                    src = node_attr(node, attribute)
                    if src:
                        candidates.append(src)
                        break

        images: Dict[str, None] = {}
        for candidate in candidates:
            if not is_usable_image_url(candidate):
                continue
            images.setdefault(normalize(candidate, page.url), None)
        return list(images)

    def extract_external_id(self, page: Page) -> Optional[str]:
        if self.rules.external_id is not None:
            return self.rules.external_id(page)
        for key in ("sku", "productID", "mpn"):
            value = first_text(page.json_ld.get(key))
            if value:
                return value
        return None

    def extract_category(self, page: Page) -> Optional[str]:
        if self.rules.category is not None:
            return self.rules.category(page)
        if self.rules.breadcrumb_selectors:
            category = category_extractor.from_breadcrumbs(page.tree, self.rules.breadcrumb_selectors)
            if category:
                return category
        return category_extractor.from_url(page.url)

    def build_metadata(self, page: Page) -> Dict[str, Any]:
        metadata = {
            "source_url": page.url,
            "extracted_at": datetime.now(timezone.utc).isoformat(),
            "retailer": self.retailer,
        }
        if self.rules.extra_metadata is not None:
            metadata.update(self.rules.extra_metadata(page))
        return metadata


class ProductListingUrlExtractor(ListingUrlExtractor):
    """
    Shared listing-page pipeline.

    Links are normalized, deduplicated by URL and then by the retailer's
    product key, validated with ``is_product_url`` and yielded in order of
    first appearance. Script-embedded ids are mined after DOM links. When
    the retailer paginates, one PaginatedUrl for the next page is yielded
    last.
    """

    def __init__(self, rules: ListingRules):
        self.rules = rules
        self.retailer = rules.retailer

    def can_handle(self, url: str) -> bool:
        return self.rules.can_handle(url)

    def candidate_hrefs(self, tree: HTMLParser) -> List[str]:
        """Every href matched by any link selector, first appearance first."""
        hrefs: Dict[str, None] = {}
        for selector in self.rules.link_selectors:
            try:
                nodes = tree.css(selector)
            except Exception as e:
                logger.debug(f"{self.retailer}: link selector {selector!r} failed: {e}")
                continue
            for node in nodes:
                href = node.attributes.get("href")
                if is_navigable_href(href):
                    hrefs.setdefault(href.strip(), None)
        return list(hrefs)

    def script_urls(self, tree: HTMLParser) -> List[str]:
        rules = self.rules
        if rules.script_id_pattern is None or not rules.script_url_template:
            return []
        return [
            rules.script_url_template.format(id=product_id)
            for product_id in mine_script_ids(tree, rules.script_id_pattern)
        ]

    def category_for(self, product_url: str, source_url: str) -> Optional[str]:
        if self.rules.category is not None:
            return self.rules.category(product_url, source_url)
        return category_extractor.from_url(source_url)

    def extract(self, html: str, source_url: str) -> Iterator[ProductListingUrl | PaginatedUrl]:
        """
        Extract product URLs (and the next page) from a listing page.

        Args:
            html: Raw page HTML
            source_url: URL the page was fetched from

        Yields:
            ProductListingUrl records, then at most one PaginatedUrl
        """
        rules = self.rules
        tree = parse_html(html)

        if rules.should_extract is not None and not rules.should_extract(tree, source_url):
            logger.info(f"{self.retailer}: skipping listing extraction for {source_url}")
            metrics.record_extraction_skipped(self.retailer, self.name)
            return

        seen_urls: set[str] = set()
        seen_keys: set[str] = set()
        discovered = 0
        discovered_at = datetime.now(timezone.utc).isoformat()

        hrefs = self.candidate_hrefs(tree) + self.script_urls(tree)
        for href in hrefs:
            resolved = normalize_url(href, source_url)
            url = rules.canonicalize(resolved) if rules.canonicalize is not None else resolved
            if url in seen_urls:
                continue
            seen_urls.add(url)

            if not rules.is_product_url(url):
                continue

            metadata: Dict[str, Any] = {
                "discovered_from": source_url,
                "discovered_at": discovered_at,
            }
            key = rules.product_key(resolved) if rules.product_key is not None else None
            if key is not None:
                if key in seen_keys:
                    continue
                seen_keys.add(key)
                metadata["product_id"] = key

            discovered += 1
            logger.debug(f"{self.retailer}: found product URL {url}")
            yield ProductListingUrl(
                url=url,
                retailer=self.retailer,
                category=self.category_for(url, source_url),
                metadata=metadata,
            )

        logger.info(f"{self.retailer}: extracted {discovered} product listing URLs from {source_url}")

        if rules.supports_pagination:
            next_page = find_next_page(
                tree,
                source_url,
                self.retailer,
                category=self.category_for(source_url, source_url),
                selectors=rules.next_page_selectors,
            )
            if next_page is not None:
                yield next_page


def url_patterns(*patterns: str, flags: int = re.IGNORECASE) -> Callable[[str], bool]:
    """Build a ``can_handle``/``is_product_url`` predicate from regexes."""
    return _matches_any([re.compile(p, flags) for p in patterns])
