"""Tests for price, weight and quantity parsing."""

import re

import pytest

from shelfwatch.crawler.parsing import (
    extract_quantity,
    parse_number,
    parse_price_to_pence,
    parse_weight,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("£12.99", 1299),
        ("99p", 99),
        ("12,99", 1299),
        ("£1,234.56", 123456),
        ("  £ 4.50 ", 450),
        ("1.9", 190),
        ("45P", 45),
    ],
)
def test_parse_price_canonical_forms(text, expected):
    """Common price formats resolve to pence."""
    assert parse_price_to_pence(text) == expected


def test_bare_integer_boundary():
    """Bare integers below 100 are pounds, 100 and above are pence."""
    assert parse_price_to_pence("99") == 9900
    assert parse_price_to_pence("100") == 100
    assert parse_price_to_pence("5") == 500


@pytest.mark.parametrize("text", [None, "", "   ", "£", "free", "12.999", "abc12"])
def test_parse_price_unparseable(text):
    """Unrecognised text yields None rather than raising."""
    assert parse_price_to_pence(text) is None


def test_parse_weight_units():
    """Weights convert to grams, volumes count as grams."""
    assert parse_weight("Adult Dry Dog Food 2kg") == 2000
    assert parse_weight("1.5 kg bag") == 1500
    assert parse_weight("2,5kg") == 2500
    assert parse_weight("400g") == 400
    assert parse_weight("Gravy 500ml") == 500
    assert parse_weight("Milk 1 litre") == 1000
    assert parse_weight("no weight here") is None
    assert parse_weight(None) is None


def test_parse_weight_pack_format_is_per_unit():
    """Multipacks report the unit weight, not the pack total."""
    assert parse_weight("12 x 400g") == 400


def test_parse_weight_rounds_half_up():
    """Fractional grams round half up."""
    assert parse_weight("0.0125kg") == 13


def test_extract_quantity():
    """Pack counts come from pack keywords or the N x M form."""
    assert extract_quantity("Pouches 12 Pack") == 12
    assert extract_quantity("Chews 30 pcs") == 30
    assert extract_quantity("Wet Food 12 x 100g") == 12
    assert extract_quantity("Single tin 400g") is None
    assert extract_quantity(None) is None


def test_extract_quantity_retailer_patterns_first():
    """Retailer patterns are tried before the generic fallback."""
    patterns = (re.compile(r"multipack of (\d+)", re.IGNORECASE),)
    assert extract_quantity("Multipack of 6, 4 x 100g", patterns) == 6


def test_parse_number():
    """The first decimal number in text is returned."""
    assert parse_number("Rated 4.5 out of 5") == 4.5
    assert parse_number("4,5") == 4.5
    assert parse_number("none") is None
