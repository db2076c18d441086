"""Retailer registry."""

import logging

from shelfwatch.crawler.crawler import Crawler, HtmlFetcher, RetailerDefinition
from shelfwatch.crawler.retailers import asda, bm, pets_at_home, tesco

logger = logging.getLogger(__name__)


class RetailerRegistry:
    """Registry of crawlable retailers keyed by slug."""

    _retailers: dict[str, RetailerDefinition] = {
        tesco.RETAILER.slug: tesco.RETAILER,
        asda.RETAILER.slug: asda.RETAILER,
        bm.RETAILER.slug: bm.RETAILER,
        pets_at_home.RETAILER.slug: pets_at_home.RETAILER,
    }

    @classmethod
    def get(cls, slug: str) -> RetailerDefinition:
        """
        Look up a retailer definition.

        Args:
            slug: Retailer slug

        Returns:
            RetailerDefinition

        Raises:
            ValueError: If the retailer is not registered
        """
        definition = cls._retailers.get(slug)
        if definition is None:
            raise ValueError(f"Unknown retailer: {slug}")
        return definition

    @classmethod
    def build_crawler(cls, slug: str, fetcher: HtmlFetcher) -> Crawler:
        return cls.get(slug).build_crawler(fetcher)

    @classmethod
    def get_supported_retailers(cls) -> list[str]:
        """Get list of supported retailer slugs."""
        return list(cls._retailers.keys())

    @classmethod
    def is_supported(cls, slug: str) -> bool:
        return slug in cls._retailers

    @classmethod
    def register(cls, definition: RetailerDefinition) -> None:
        """Register (or replace) a retailer definition."""
        if definition.slug in cls._retailers:
            logger.warning(f"Replacing registered retailer {definition.slug}")
        cls._retailers[definition.slug] = definition
