"""GTIN / EAN / UPC discovery."""

import re
from typing import Any, Dict, Optional

from selectolax.parser import HTMLParser

from shelfwatch.crawler.json_ld import offers_list
from shelfwatch.crawler.selectors import node_attr, select_first

VALID_BARCODE_LENGTHS = (8, 12, 13, 14)

JSON_LD_BARCODE_FIELDS = ("gtin13", "gtin", "gtin8", "gtin14", "gtin12", "ean", "upc")

BARCODE_SELECTORS = (
    ('meta[property="product:ean"]', "content"),
    ('meta[property="product:gtin"]', "content"),
    ('meta[property="product:upc"]', "content"),
    ('meta[itemprop="gtin13"]', "content"),
    ('meta[itemprop="gtin"]', "content"),
    ('meta[itemprop="gtin8"]', "content"),
    ('meta[itemprop="gtin14"]', "content"),
    ('[itemprop="gtin13"]', "content"),
    ("[data-barcode]", "data-barcode"),
    ("[data-ean]", "data-ean"),
    ("[data-gtin]", "data-gtin"),
    ("[data-upc]", "data-upc"),
)


def normalize_barcode(value: Any) -> Optional[str]:
    """Strip non-digits and accept only GTIN-8/12/13/14 lengths."""
    if value is None:
        return None
    digits = re.sub(r"\D", "", str(value))
    if len(digits) in VALID_BARCODE_LENGTHS:
        return digits
    return None


def _from_identifier(identifier: Any) -> Optional[str]:
    if isinstance(identifier, dict):
        kind = str(identifier.get("propertyID") or identifier.get("name") or "").lower()
        if kind and not any(t in kind for t in ("ean", "gtin", "upc")):
            return None
        return normalize_barcode(identifier.get("value") or identifier.get("@value"))
    return normalize_barcode(identifier)


def barcode_from_json_ld(product: Dict[str, Any]) -> Optional[str]:
    """Find a barcode on a JSON-LD Product or its offers."""
    for key in JSON_LD_BARCODE_FIELDS:
        barcode = normalize_barcode(product.get(key))
        if barcode:
            return barcode

    identifier = product.get("identifier")
    identifiers = identifier if isinstance(identifier, list) else [identifier]
    for item in identifiers:
        barcode = _from_identifier(item)
        if barcode:
            return barcode

    barcode = normalize_barcode(product.get("productID"))
    if barcode:
        return barcode

    for offer in offers_list(product):
        for key in JSON_LD_BARCODE_FIELDS:
            barcode = normalize_barcode(offer.get(key))
            if barcode:
                return barcode
    return None


def barcode_from_dom(tree: HTMLParser) -> Optional[str]:
    """Find a barcode in meta tags and data attributes."""
    for selector, attribute in BARCODE_SELECTORS:
        node = select_first(tree, [selector], "barcode")
        barcode = normalize_barcode(node_attr(node, attribute))
        if barcode:
            return barcode
    return None


def extract_barcode(tree: HTMLParser, product: Dict[str, Any]) -> Optional[str]:
    """Barcode from structured data first, then the DOM."""
    return barcode_from_json_ld(product) or barcode_from_dom(tree)
