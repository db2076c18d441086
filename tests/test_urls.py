"""Tests for link resolution and filtering."""

import pytest

from shelfwatch.crawler.urls import (
    host_of,
    is_navigable_href,
    normalize_url,
    strip_query_and_fragment,
)

BASE = "https://shop.example.com/pets/dog-food"


@pytest.mark.parametrize(
    "href,expected",
    [
        ("https://other.example.com/a", "https://other.example.com/a"),
        ("//cdn.example.com/img.jpg", "https://cdn.example.com/img.jpg"),
        ("/product/a", "https://shop.example.com/product/a"),
        ("product/a", "https://shop.example.com/pets/product/a"),
        ("./x", "https://shop.example.com/pets/x"),
        ("../product/a", "https://shop.example.com/product/a"),
        ("?page=2", "https://shop.example.com/pets/dog-food?page=2"),
        ("  /product/b \n", "https://shop.example.com/product/b"),
    ],
)
def test_normalize_url(href, expected):
    assert normalize_url(href, BASE) == expected


def test_strip_query_and_fragment():
    assert strip_query_and_fragment(f"{BASE}?ref=tile#reviews") == BASE


def test_host_of():
    assert host_of("https://WWW.Tesco.com/groceries") == "www.tesco.com"
    assert host_of("/groceries") is None


@pytest.mark.parametrize(
    "href,navigable",
    [
        ("/product/a", True),
        ("", False),
        (None, False),
        ("#top", False),
        ("javascript:void(0)", False),
        ("mailto:help@example.com", False),
    ],
)
def test_is_navigable_href(href, navigable):
    assert is_navigable_href(href) is navigable
