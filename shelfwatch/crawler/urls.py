"""URL normalization for discovered links."""

from typing import Optional
from urllib.parse import urljoin, urlsplit, urlunsplit


def normalize_url(href: str, base_url: str) -> str:
    """
    Resolve a scraped href against the page it was found on.

    Handles absolute, protocol-relative (``//host/path``), root-relative
    (``/path``), document-relative (``path``, ``./path``, ``../path``) and
    query-only (``?page=2``) forms.

    Args:
        href: Raw href attribute value
        base_url: URL of the page the link was found on

    Returns:
        Absolute URL
    """
    return urljoin(base_url, href.strip())


def strip_query_and_fragment(url: str) -> str:
    """Drop the query string and fragment from a URL."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def host_of(url: str) -> Optional[str]:
    """Lower-cased host of a URL, or None for relative URLs."""
    host = urlsplit(url).hostname
    return host.lower() if host else None


def is_navigable_href(href: Optional[str]) -> bool:
    """Reject empty, script and in-page anchor hrefs."""
    if not href:
        return False
    lowered = href.strip().lower()
    if not lowered or lowered.startswith(("javascript:", "mailto:", "tel:", "#")):
        return False
    return "void(0)" not in lowered
