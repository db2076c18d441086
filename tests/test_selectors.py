"""Tests for ordered selector resolution."""

from shelfwatch.crawler.selectors import (
    exists,
    node_attr,
    node_text,
    parse_html,
    select_all,
    select_first,
)

HTML = """
<html><body>
  <div class="b">second</div>
  <div class="c">third</div>
  <ul><li class="item">one</li><li class="item">two</li></ul>
  <span class="blank" data-x="  "> </span>
</body></html>
"""


def test_select_first_falls_through_to_matching_selector():
    """Only B matches, so B's element is returned."""
    tree = parse_html(HTML)
    node = select_first(tree, [".a", ".b", ".c"])
    assert node_text(node) == "second"


def test_select_first_survives_invalid_selector():
    """A selector that fails to evaluate does not stop the fallback chain."""
    tree = parse_html(HTML)
    node = select_first(tree, ["div[", ".b", ".c"], "test")
    assert node_text(node) == "second"


def test_select_first_accept_predicate():
    """Rejected matches move on to the next selector."""
    tree = parse_html(HTML)
    node = select_first(tree, [".b", ".c"], accept=lambda n: node_text(n) == "third")
    assert node_text(node) == "third"


def test_select_first_no_match():
    """Nothing matching returns None."""
    assert select_first(parse_html(HTML), [".missing"]) is None


def test_select_all_uses_first_selector_with_matches():
    """All elements of the first matching selector are returned."""
    tree = parse_html(HTML)
    nodes = select_all(tree, [".missing", ".item", "div"])
    assert [node_text(n) for n in nodes] == ["one", "two"]
    assert select_all(tree, [".missing"]) == []


def test_exists_and_blank_values():
    """Blank text and attributes read as missing."""
    tree = parse_html(HTML)
    assert exists(tree, [".missing", ".c"])
    blank = select_first(tree, [".blank"])
    assert node_text(blank) is None
    assert node_attr(blank, "data-x") is None
    assert node_attr(blank, "data-y") is None
    assert node_text(None) is None


def test_parse_html_tolerates_empty_input():
    """Empty documents still parse."""
    for html in (None, "", "   "):
        tree = parse_html(html)
        assert select_first(tree, ["h1"]) is None
