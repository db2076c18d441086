"""Next-page discovery for paginated listing pages."""

import logging
import re
from typing import Optional, Sequence

from selectolax.parser import HTMLParser

from shelfwatch.crawler.dtos import PaginatedUrl
from shelfwatch.crawler.selectors import node_attr, node_text, select_all, select_first
from shelfwatch.crawler.urls import is_navigable_href, normalize_url

logger = logging.getLogger(__name__)

NEXT_PAGE_SELECTORS = (
    'a[rel="next"]',
    'a[aria-label*="Next"]',
    'a[aria-label*="next"]',
    'a[aria-label="Go to next page"]',
    ".pagination-next a",
    ".pagination__next a",
    "a.next",
    "a.pagination-link--next",
    '[class*="pagination"] a[class*="next"]',
    'nav[aria-label*="pagination"] a[class*="next"]',
)

PAGE_NUMBER_LINK_SELECTORS = (
    ".pagination a",
    '[class*="pagination"] a',
    'nav[aria-label*="pagination"] a',
    ".pager a",
    '[class*="pager"] a',
)

# Listing pages that paginate by offset use this page size
OFFSET_PAGE_SIZE = 24

_PAGE_PARAM = re.compile(r"[?&]page=(\d+)")
_PAGE_PATH = re.compile(r"/page/(\d+)")
_P_PATH = re.compile(r"/p/(\d+)")
_START_PARAM = re.compile(r"[?&]start=(\d+)")


def current_page_number(url: str) -> int:
    """Infer the page number of a listing URL, defaulting to 1."""
    match = _PAGE_PARAM.search(url)
    if match:
        return int(match.group(1))
    match = _PAGE_PATH.search(url)
    if match:
        return int(match.group(1))
    match = _P_PATH.search(url)
    if match:
        return int(match.group(1))
    match = _START_PARAM.search(url)
    if match:
        return int(match.group(1)) // OFFSET_PAGE_SIZE + 1
    return 1


def next_page_number(next_url: str, current_page: int) -> int:
    """Page number of a discovered next-page link."""
    match = _PAGE_PARAM.search(next_url)
    if match and int(match.group(1)) > 0:
        return int(match.group(1))
    return current_page + 1


def find_next_page_href(
    tree: HTMLParser,
    current_page: int,
    selectors: Sequence[str] = NEXT_PAGE_SELECTORS,
) -> Optional[str]:
    """
    Find the raw href of the next listing page.

    Explicit "next" links win; otherwise a numbered pagination link whose
    text is ``current_page + 1`` is used.
    """
    node = select_first(
        tree,
        selectors,
        "next page",
        accept=lambda n: is_navigable_href(n.attributes.get("href")),
    )
    if node is not None:
        return node_attr(node, "href")

    wanted = str(current_page + 1)
    for link in select_all(tree, PAGE_NUMBER_LINK_SELECTORS, "page number"):
        href = link.attributes.get("href")
        if node_text(link) == wanted and is_navigable_href(href):
            return href.strip()
    return None


def find_next_page(
    tree: HTMLParser,
    source_url: str,
    retailer: str,
    category: Optional[str] = None,
    selectors: Sequence[str] = NEXT_PAGE_SELECTORS,
) -> Optional[PaginatedUrl]:
    """
    Discover the single successor page of a listing page.

    Args:
        tree: Parsed listing page
        source_url: URL of the listing page
        retailer: Retailer slug
        category: Category inferred for the listing page
        selectors: Next-link selectors in preference order

    Returns:
        PaginatedUrl for the next page, or None on the last page
    """
    current = current_page_number(source_url)
    href = find_next_page_href(tree, current, selectors)
    if not href:
        return None

    next_url = normalize_url(href, source_url)
    if next_url == source_url:
        return None

    page = next_page_number(next_url, current)
    logger.debug(f"Found next page {page} for {source_url}: {next_url}")
    return PaginatedUrl(
        url=next_url,
        retailer=retailer,
        page=page,
        category=category,
        discovered_from=source_url,
    )
