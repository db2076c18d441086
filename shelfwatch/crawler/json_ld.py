"""Extract product data from embedded JSON in HTML pages."""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)


def extract_json_ld(tree: HTMLParser) -> List[Any]:
    """
    Extract JSON-LD structured data from script tags.

    Returns list of JSON-LD documents found in the page, in document order.
    Scripts that do not contain valid JSON are skipped.
    """
    results = []
    for script in tree.css('script[type="application/ld+json"]'):
        content = script.text()
        if not content or not content.strip():
            continue
        try:
            results.append(json.loads(content))
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping malformed JSON-LD block: {e}")
    return results


def _is_type(obj: Any, type_name: str) -> bool:
    if not isinstance(obj, dict):
        return False
    declared = obj.get("@type")
    if isinstance(declared, list):
        return type_name in declared
    return declared == type_name


def find_product(documents: List[Any]) -> Dict[str, Any]:
    """
    Find the first schema.org Product in a list of JSON-LD documents.

    Handles plain objects, top-level arrays and ``@graph``-wrapped
    documents.

    Returns:
        The Product object, or an empty dict when the page has none
    """
    for document in documents:
        candidates = document if isinstance(document, list) else [document]
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            graph = candidate.get("@graph")
            if isinstance(graph, list):
                for item in graph:
                    if _is_type(item, "Product"):
                        return item
                continue
            if _is_type(candidate, "Product"):
                return candidate
    return {}


def extract_product_json_ld(tree: HTMLParser) -> Dict[str, Any]:
    """Parse the page's JSON-LD once and return its Product object."""
    return find_product(extract_json_ld(tree))


def offers_list(product: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Normalize ``offers`` to a list of offer objects.

    A single offer object (one that carries ``@type`` or ``price``) is
    wrapped; an ``AggregateOffer`` with nested ``offers`` is flattened.
    """
    offers = product.get("offers")
    if not offers:
        return []
    if isinstance(offers, dict):
        nested = offers.get("offers")
        if isinstance(nested, list) and "price" not in offers:
            return [o for o in nested if isinstance(o, dict)]
        if "@type" in offers or "price" in offers:
            return [offers]
        return []
    if isinstance(offers, list):
        return [o for o in offers if isinstance(o, dict)]
    return []


def first_text(value: Any) -> Optional[str]:
    """Return a non-empty string from a JSON-LD scalar or ``{name: ...}`` object."""
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("name")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def mine_script_ids(tree: HTMLParser, pattern: re.Pattern) -> List[str]:
    """
    Collect identifiers embedded in inline scripts.

    Client-rendered listing pages often ship product ids inside a JSON
    state blob rather than as anchor tags.

    Args:
        tree: Parsed document
        pattern: Regex whose first group captures the identifier

    Returns:
        Unique identifiers in order of first appearance
    """
    seen: Dict[str, None] = {}
    for script in tree.css("script"):
        if script.attributes.get("type") == "application/ld+json":
            continue
        content = script.text()
        if not content:
            continue
        for match in pattern.finditer(content):
            seen.setdefault(match.group(1), None)
    return list(seen)
