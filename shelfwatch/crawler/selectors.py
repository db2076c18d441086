"""Ordered selector resolution over a parsed HTML document.

Retailers declare each field as a list of CSS selectors in preference
order. The first selector that matches (and whose element passes an
optional validity check) wins, so a field keeps resolving after a markup
change as long as one of the historical selectors still matches.
"""

import logging
from typing import Callable, Optional, Sequence

from selectolax.parser import HTMLParser, Node

logger = logging.getLogger(__name__)

EMPTY_DOCUMENT = "<html><head></head><body></body></html>"


def parse_html(html: Optional[str]) -> HTMLParser:
    """Parse HTML, tolerating empty input."""
    return HTMLParser(html if html and html.strip() else EMPTY_DOCUMENT)


def select_first(
    tree: HTMLParser | Node,
    selectors: Sequence[str],
    context: str = "",
    accept: Optional[Callable[[Node], bool]] = None,
) -> Optional[Node]:
    """
    Return the first element matched by the highest-priority selector.

    For each selector only its first match is considered; if ``accept``
    rejects it the next selector is tried. A selector that fails to
    evaluate is logged and skipped.

    Args:
        tree: Parsed document or element to search within
        selectors: Candidate CSS selectors, most preferred first
        context: Field name used in debug logging
        accept: Optional validity predicate for the matched element

    Returns:
        Matching element, or None
    """
    for selector in selectors:
        try:
            nodes = tree.css(selector)
            if not nodes:
                continue
            node = nodes[0]
            if accept is None or accept(node):
                return node
        except Exception as e:
            logger.debug(f"{context} selector {selector!r} failed: {e}")
    return None


def select_all(
    tree: HTMLParser | Node,
    selectors: Sequence[str],
    context: str = "",
) -> list[Node]:
    """
    Return every element matched by the first selector that matches anything.

    Args:
        tree: Parsed document or element to search within
        selectors: Candidate CSS selectors, most preferred first
        context: Field name used in debug logging

    Returns:
        List of matched elements (empty when nothing matches)
    """
    for selector in selectors:
        try:
            nodes = tree.css(selector)
            if nodes:
                return list(nodes)
        except Exception as e:
            logger.debug(f"{context} selector {selector!r} failed: {e}")
    return []


def exists(tree: HTMLParser | Node, selectors: Sequence[str], context: str = "") -> bool:
    """Whether any of the selectors matches."""
    return select_first(tree, selectors, context) is not None


def node_text(node: Optional[Node]) -> Optional[str]:
    """Stripped text content, or None when empty."""
    if node is None:
        return None
    text = node.text(deep=True, separator=" ", strip=True)
    text = " ".join(text.split())
    return text or None


def node_attr(node: Optional[Node], name: str) -> Optional[str]:
    """Stripped attribute value, or None when missing or blank."""
    if node is None:
        return None
    value = node.attributes.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None
