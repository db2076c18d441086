"""Category inference from URLs and breadcrumb trails."""

import logging
import re
from typing import Optional, Sequence

from selectolax.parser import HTMLParser

from shelfwatch.crawler.selectors import node_text

logger = logging.getLogger(__name__)

# Category slug -> URL patterns, most specific first
DEFAULT_CATEGORY_PATTERNS: dict[str, tuple[str, ...]] = {
    "dog-food": (r"dog-food", r"puppy-food"),
    "dog-treats": (r"dog-treats", r"puppy-treats"),
    "cat-food": (r"cat-food", r"kitten-food"),
    "cat-treats": (r"cat-treats", r"kitten-treats"),
    "dog-accessories": (r"dog-accessories", r"puppy-accessories"),
    "cat-accessories": (r"cat-accessories", r"kitten-accessories"),
    "dog": (r"/dog(?:/|$|\?|-)", r"/puppy(?:/|$|\?|-)"),
    "cat": (r"/cat(?:/|$|\?|-)", r"/kitten(?:/|$|\?|-)"),
    "pets": (r"/pets?(?:/|$|\?|-)",),
}

DEFAULT_GENERIC_TERMS = frozenset({"home", "groceries", "shop", "all", "pets", ""})

DEFAULT_BREADCRUMB_SELECTORS = (
    ".breadcrumb a",
    ".breadcrumbs a",
    '[data-auto="breadcrumb"] a',
    "nav.breadcrumb a",
    ".beans-breadcrumb a",
    '[class*="breadcrumb"] a',
)

_AISLE = re.compile(r"/aisle/((?:[^/]+/)*[^/\d]+)(?:/\d+)?(?:/|$|\?)", re.IGNORECASE)
_SHELF = re.compile(r"/shelf/([^/?]+)", re.IGNORECASE)
_SUPER_DEPARTMENT = re.compile(r"/super-department/([^/]+)", re.IGNORECASE)
_SEARCH = re.compile(r"/search/([^/?]+)", re.IGNORECASE)
_GOL_UI = re.compile(r"/gol-ui/[^/]+/([\w-]+)", re.IGNORECASE)
_BROWSE = re.compile(
    r"/browse/.*?/(dog-food|dog-treats|puppy-food|puppy-treats|cat-food|cat-treats)(?:-\d+)?(?:/|$)",
    re.IGNORECASE,
)
_ANIMAL_TYPE = re.compile(r"/(dog|puppy|cat|kitten)/(food|treats)(?:/|$)", re.IGNORECASE)
_PETS_ANIMAL_TYPE = re.compile(
    r"/pets?/(?:[^/]+/)*?(dog|puppy|cat|kitten)[-/](food|treats)(?:/|$|\?)",
    re.IGNORECASE,
)
_PETS_SEGMENT = re.compile(r"/pets?/([\w-]+)", re.IGNORECASE)

_ANIMAL_ALIASES = {"puppy": "dog", "kitten": "cat"}


def _animal_category(animal: str, kind: str) -> str:
    animal = animal.lower()
    return f"{_ANIMAL_ALIASES.get(animal, animal)}-{kind.lower()}"


class CategoryExtractor:
    """Infers a product category from URL structure or breadcrumbs."""

    def __init__(
        self,
        patterns: Optional[dict[str, Sequence[str]]] = None,
        generic_terms: Optional[frozenset[str]] = None,
    ):
        self.patterns = {
            category: [re.compile(p, re.IGNORECASE) for p in regexes]
            for category, regexes in (patterns or DEFAULT_CATEGORY_PATTERNS).items()
        }
        self.generic_terms = generic_terms if generic_terms is not None else DEFAULT_GENERIC_TERMS

    def is_generic(self, term: str) -> bool:
        return term.strip().lower() in self.generic_terms

    @staticmethod
    def _normalize(segment: str) -> str:
        return segment.replace("-", " ")

    def _from_path(self, path: str) -> Optional[str]:
        parts = [p for p in path.split("/") if p and not self.is_generic(p)]
        if not parts:
            return None
        return self._normalize(parts[-1])

    def from_url(self, url: str) -> Optional[str]:
        """
        Extract a category from common URL layouts.

        Structured path segments (aisle, shelf, super-department, search)
        are tried first, then pet food/treat layouts, then the configured
        category patterns.

        Args:
            url: Listing or product URL

        Returns:
            Category name, or None
        """
        match = _AISLE.search(url)
        if match:
            return self._from_path(match.group(1))

        match = _SHELF.search(url) or _SUPER_DEPARTMENT.search(url)
        if match:
            return self._normalize(match.group(1))

        match = _SEARCH.search(url)
        if match:
            return match.group(1)

        match = _GOL_UI.search(url)
        if match:
            return self._normalize(match.group(1))

        match = _BROWSE.search(url)
        if match:
            return match.group(1).lower()

        match = _ANIMAL_TYPE.search(url) or _PETS_ANIMAL_TYPE.search(url)
        if match:
            return _animal_category(match.group(1), match.group(2))

        match = _PETS_SEGMENT.search(url)
        if match:
            segment = match.group(1)
            for category, regexes in self.patterns.items():
                if any(r.fullmatch(segment) for r in regexes):
                    return category
            return self._normalize(segment)

        for category, regexes in self.patterns.items():
            if any(r.search(url) for r in regexes):
                return category

        return None

    def from_breadcrumbs(
        self,
        tree: HTMLParser,
        selectors: Sequence[str] = DEFAULT_BREADCRUMB_SELECTORS,
        depth_from_end: int = 1,
    ) -> Optional[str]:
        """
        Extract a category from a breadcrumb trail.

        Args:
            tree: Parsed document
            selectors: Breadcrumb link selectors
            depth_from_end: 0 for the last crumb, 1 for its parent, ...

        Returns:
            Category name, or None when the trail is missing or generic
        """
        for selector in selectors:
            try:
                nodes = tree.css(selector)
            except Exception as e:
                logger.debug(f"Breadcrumb selector {selector!r} failed: {e}")
                continue
            if len(nodes) < 2:
                continue

            crumbs = [text for text in (node_text(n) for n in nodes) if text]
            if len(crumbs) < 2:
                continue

            index = max(0, len(crumbs) - 1 - depth_from_end)
            category = crumbs[index]
            if self.is_generic(category) and index < len(crumbs) - 1:
                category = crumbs[-1]
            if not self.is_generic(category):
                return category
        return None


category_extractor = CategoryExtractor()
