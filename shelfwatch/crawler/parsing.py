"""Price, weight and pack-quantity parsing.

All functions here are pure: they take free text scraped from a page and
return canonical integer units (pence, grams) or ``None`` when the text
cannot be interpreted.
"""

import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

PENCE_PATTERN = re.compile(r"^(\d+)p$", re.IGNORECASE)
CURRENCY_NOISE_PATTERN = re.compile(r"[£$€\s,]")
DECIMAL_PRICE_PATTERN = re.compile(r"^(\d+)[.,](\d{1,2})$")
INTEGER_PRICE_PATTERN = re.compile(r"^(\d+)$")

WEIGHT_PATTERN = re.compile(
    r"(\d+(?:[.,]\d+)?)\s*(kg|g|ml|l|ltr|litre|litres)\b",
    re.IGNORECASE,
)

WEIGHT_MULTIPLIERS = {
    "kg": 1000,
    "g": 1,
    "ml": 1,
    "l": 1000,
    "ltr": 1000,
    "litre": 1000,
    "litres": 1000,
}

DEFAULT_QUANTITY_PATTERNS = (
    re.compile(r"(\d+)\s*(?:pack|x|pcs|pieces|count)\b", re.IGNORECASE),
)
MULTIPACK_FALLBACK_PATTERN = re.compile(r"(\d+)\s*x\s*\d+", re.IGNORECASE)


def parse_price_to_pence(text: Optional[str]) -> Optional[int]:
    """
    Convert a scraped price string into pence.

    Rules are applied in order; the first one that matches wins:

    - ``"99p"`` is already pence.
    - Currency symbols, whitespace and thousands separators are stripped.
    - ``"12.99"`` / ``"12.9"`` are pounds and pence; a single fractional
      digit is tenths of a pound (``"1.9"`` -> 190).
    - A bare integer below 100 is pounds, 100 and above is pence. This is a
      known ambiguity (``"150"`` may mean £150 or £1.50) and is kept as is.

    Args:
        text: Raw price text

    Returns:
        Price in pence, or None when unparseable
    """
    if text is None:
        return None

    text = text.strip()
    if not text:
        return None

    match = PENCE_PATTERN.match(text)
    if match:
        return int(match.group(1))

    cleaned = CURRENCY_NOISE_PATTERN.sub("", text)
    if not cleaned:
        return None

    match = DECIMAL_PRICE_PATTERN.match(cleaned)
    if match:
        pounds = int(match.group(1))
        pence = int(match.group(2).ljust(2, "0"))
        return pounds * 100 + pence

    match = INTEGER_PRICE_PATTERN.match(cleaned)
    if match:
        value = int(match.group(1))
        return value * 100 if value < 100 else value

    return None


def parse_weight(text: Optional[str]) -> Optional[int]:
    """
    Find the first weight or volume in text and convert it to grams.

    Millilitres count as grams. Pack formats such as ``"12 x 400g"`` return
    the per-unit weight (400), the pack count is extracted separately by
    :func:`extract_quantity`.

    Args:
        text: Free text (offer name, weight field or product title)

    Returns:
        Weight in grams, or None when no weight is present
    """
    if not text:
        return None

    match = WEIGHT_PATTERN.search(text)
    if not match:
        return None

    value = Decimal(match.group(1).replace(",", "."))
    unit = match.group(2).lower()
    grams = value * WEIGHT_MULTIPLIERS[unit]
    return int(grams.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def extract_quantity(
    text: Optional[str],
    patterns: Iterable[re.Pattern] = DEFAULT_QUANTITY_PATTERNS,
) -> Optional[int]:
    """
    Extract a pack count from a product title.

    Args:
        text: Product title
        patterns: Retailer-specific patterns tried before the generic
            ``"N x M"`` fallback; group 1 must capture the count

    Returns:
        Pack quantity, or None
    """
    if not text:
        return None

    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return int(match.group(1))

    match = MULTIPACK_FALLBACK_PATTERN.search(text)
    if match:
        return int(match.group(1))

    return None


def parse_number(text: Optional[str]) -> Optional[float]:
    """Pull the first decimal number out of text (ratings, counts)."""
    if not text:
        return None
    match = re.search(r"\d+(?:[.,]\d+)?", text)
    if not match:
        return None
    return float(match.group(0).replace(",", "."))
