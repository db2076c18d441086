"""Retailer slug helpers."""

import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """
    Normalize a retailer display name to its slug.

    "Pets at Home" -> "pets-at-home", "B&M" -> "bm".
    """
    value = value.strip().lower().replace("&", "").replace("'", "")
    return _NON_ALNUM.sub("-", value).strip("-")
