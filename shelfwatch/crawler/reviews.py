"""Customer review extraction from product pages."""

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Optional, Sequence

from selectolax.parser import HTMLParser, Node

from shelfwatch import metrics
from shelfwatch.crawler.dtos import ProductReview
from shelfwatch.crawler.extractors import Extractor
from shelfwatch.crawler.json_ld import extract_product_json_ld, first_text
from shelfwatch.crawler.selectors import exists, node_attr, node_text, parse_html, select_first

logger = logging.getLogger(__name__)

BLOCK_INDICATORS = ("captcha", "robot check", "access denied", "blocked")
TITLE_BLOCK_INDICATORS = ("sorry", "robot", "blocked", "captcha", "access denied")

RATING_ATTRIBUTES = ("data-rating", "data-score", "data-stars")
_RATING_TEXT = re.compile(r"(\d+(?:\.\d+)?)\s*(?:/\s*5|out of 5|stars?)", re.IGNORECASE)
_BARE_NUMBER = re.compile(r"^(\d+(?:\.\d+)?)$")
_WIDTH_PERCENT = re.compile(r"width:\s*(\d+(?:\.\d+)?)\s*%")
_VERIFIED_TEXT = re.compile(r"verified\s+(purchase|buyer|owner)", re.IGNORECASE)


def is_blocked_page(tree: HTMLParser, html: str) -> bool:
    """Detect captcha and bot-wall pages."""
    lowered = (html or "").lower()
    if any(indicator in lowered for indicator in BLOCK_INDICATORS):
        return True
    title = (node_text(tree.css_first("title")) or "").lower()
    return any(indicator in title for indicator in TITLE_BLOCK_INDICATORS)


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_review_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable review date: {value!r}")
        return None


@dataclass
class ReviewRules:
    """Retailer-specific configuration for :class:`ProductReviewsExtractor`."""

    retailer: str
    can_handle: Callable[[str], bool]
    review_selectors: Sequence[str] = (".review", '[itemprop="review"]', "[data-review-id]")
    body_selectors: Sequence[str] = (
        ".review-body", ".review-text", ".review-content", '[itemprop="reviewBody"]', ".description", "p",
    )
    author_selectors: Sequence[str] = (".review-author", ".author-name", '[itemprop="author"]', ".reviewer-name")
    title_selectors: Sequence[str] = (".review-title", ".review-headline", '[itemprop="name"]', "h3", "h4")
    rating_selectors: Sequence[str] = (
        "[data-rating]", "[data-score]", "[data-stars]", ".review-rating", ".rating", ".star-rating",
    )
    date_selectors: Sequence[str] = ('[itemprop="datePublished"]', ".review-date", ".date", "time")
    verified_selectors: Sequence[str] = (
        ".verified-purchase", ".verified-buyer", '[data-verified="true"]', ".badge-verified", ".verified",
    )
    helpful_selectors: Sequence[str] = (
        ".helpful-count", ".vote-count", "[data-helpful-count]", ".upvotes", ".helpful-votes",
    )
    filled_star_selector: str = ".star-filled, .star-full, .icon-star-filled, .star.active"


class ProductReviewsExtractor(Extractor):
    """
    Shared review pipeline.

    JSON-LD ``review`` entries on the page's Product are used first. The
    DOM is scanned only when structured data produced no reviews. Reviews
    without a positive rating or a body are dropped.
    """

    def __init__(self, rules: ReviewRules):
        self.rules = rules
        self.retailer = rules.retailer

    def can_handle(self, url: str) -> bool:
        return self.rules.can_handle(url)

    def extract(self, html: str, source_url: str) -> Iterator[ProductReview]:
        tree = parse_html(html)
        if is_blocked_page(tree, html):
            logger.warning(f"{self.retailer}: blocked or captcha page detected at {source_url}")
            metrics.record_extraction_skipped(self.retailer, self.name)
            return

        extracted = 0
        for review in self.from_json_ld(tree, source_url):
            extracted += 1
            yield review

        if extracted == 0:
            for review in self.from_dom(tree, source_url):
                extracted += 1
                yield review

        logger.info(f"{self.retailer}: extracted {extracted} reviews from {source_url}")

    def review_id(self, url: str, author: Optional[str], body: str, index: int) -> str:
        digest = hashlib.md5(f"{url}{author or ''}{body}".encode()).hexdigest()
        return f"{self.retailer}-review-{digest}-{index}"

    def _metadata(self, source: str, url: str) -> Dict[str, Any]:
        return {
            "source": source,
            "source_url": url,
            "retailer": self.retailer,
            "extracted_at": datetime.now(timezone.utc).isoformat(),
        }

    def from_json_ld(self, tree: HTMLParser, url: str) -> Iterator[ProductReview]:
        reviews = extract_product_json_ld(tree).get("review")
        if isinstance(reviews, dict):
            reviews = [reviews]
        if not isinstance(reviews, list):
            return

        for index, data in enumerate(reviews):
            if not isinstance(data, dict):
                continue
            review = self.parse_json_ld_review(data, url, index)
            if review is not None:
                yield review

    def parse_json_ld_review(self, data: Dict[str, Any], url: str, index: int) -> Optional[ProductReview]:
        rating_data = data.get("reviewRating")
        if isinstance(rating_data, dict):
            rating = _to_float(rating_data.get("ratingValue"))
        else:
            rating = _to_float(data.get("ratingValue"))
        if not rating or rating <= 0:
            return None

        body = first_text(data.get("reviewBody")) or first_text(data.get("description"))
        if not body:
            return None

        author = first_text(data.get("author"))
        external_id = data.get("@id") or data.get("identifier") or self.review_id(url, author, body, index)

        return ProductReview(
            external_id=str(external_id),
            rating=rating,
            body=body,
            author=author,
            title=first_text(data.get("name")) or first_text(data.get("headline")),
            verified_purchase=bool(data.get("verifiedPurchase", False)),
            review_date=parse_review_date(data.get("datePublished")),
            helpful_count=int(_to_float(data.get("upvoteCount")) or 0),
            metadata=self._metadata("json-ld", url),
        )

    def from_dom(self, tree: HTMLParser, url: str) -> Iterator[ProductReview]:
        for selector in self.rules.review_selectors:
            try:
                nodes = tree.css(selector)
            except Exception as e:
                logger.debug(f"{self.retailer}: review selector {selector!r} failed: {e}")
                continue
            if not nodes:
                continue

            index = 0
            for node in nodes:
                review = self.parse_dom_review(node, url, index)
                if review is not None:
                    yield review
                    index += 1
            return

    def parse_dom_review(self, node: Node, url: str, index: int) -> Optional[ProductReview]:
        rules = self.rules
        rating = self.dom_rating(node)
        if not rating or rating <= 0:
            return None

        body = node_text(select_first(node, rules.body_selectors, "review body"))
        if not body:
            return None

        author = node_text(select_first(node, rules.author_selectors, "review author"))
        external_id = node_attr(node, "data-review-id") or node_attr(node, "id")

        return ProductReview(
            external_id=external_id or self.review_id(url, author, body, index),
            rating=rating,
            body=body,
            author=author,
            title=node_text(select_first(node, rules.title_selectors, "review title")),
            verified_purchase=self.is_verified(node),
            review_date=self.dom_date(node),
            helpful_count=self.helpful_count(node),
            metadata=self._metadata("dom", url),
        )

    def dom_rating(self, node: Node) -> Optional[float]:
        for attribute in RATING_ATTRIBUTES:
            value = _to_float(node_attr(node, attribute))
            if value is not None:
                return value

        rating_node = select_first(node, self.rules.rating_selectors, "rating")
        if rating_node is not None:
            for attribute in RATING_ATTRIBUTES:
                value = _to_float(node_attr(rating_node, attribute))
                if value is not None:
                    return value
            label = node_attr(rating_node, "aria-label")
            match = _RATING_TEXT.search(label) if label else None
            if match:
                return float(match.group(1))

        item_prop = node.css_first('[itemprop="ratingValue"]')
        if item_prop is not None:
            value = _to_float(node_attr(item_prop, "content") or node_text(item_prop))
            if value is not None:
                return value

        try:
            stars = node.css(self.rules.filled_star_selector)
        except Exception as e:
            logger.debug(f"{self.retailer}: star selector failed: {e}")
            stars = []
        if stars:
            return float(len(stars))

        width_node = node.css_first(".rating-stars, .star-rating, .bv-rating-stars-on")
        style = node_attr(width_node, "style")
        match = _WIDTH_PERCENT.search(style) if style else None
        if match:
            return round(float(match.group(1)) / 20, 1)

        for selector in (".rating", ".stars", ".review-rating"):
            text = node_text(node.css_first(selector))
            if not text:
                continue
            match = _RATING_TEXT.search(text) or _BARE_NUMBER.match(text)
            if match:
                return float(match.group(1))
        return None

    def dom_date(self, node: Node) -> Optional[datetime]:
        date_node = select_first(node, self.rules.date_selectors, "review date")
        if date_node is None:
            return None
        raw = node_attr(date_node, "datetime") or node_attr(date_node, "content") or node_text(date_node)
        return parse_review_date(raw)

    def is_verified(self, node: Node) -> bool:
        if exists(node, self.rules.verified_selectors, "verified"):
            return True
        return bool(_VERIFIED_TEXT.search(node.html or ""))

    def helpful_count(self, node: Node) -> int:
        helpful = select_first(node, self.rules.helpful_selectors, "helpful count")
        if helpful is None:
            return 0
        raw = node_attr(helpful, "data-helpful-count") or node_text(helpful) or ""
        match = re.search(r"(\d+)", raw)
        return int(match.group(1)) if match else 0
