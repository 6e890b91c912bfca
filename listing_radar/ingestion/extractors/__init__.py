"""
Extractor Registry Module
=========================

Central registry for sender-specific extraction strategies.
New senders are supported by registering an extractor; the generic HTML
block extractor handles everything else.
"""

from __future__ import annotations

from typing import Any, Type

from listing_radar.ingestion.extractors.base import BaseExtractor, HtmlBlockExtractor
from listing_radar.ingestion.extractors.craigslist import CraigslistExtractor
from listing_radar.ingestion.extractors.html import (
    ListingCandidate,
    extract_image,
    extract_listings,
    extract_urls,
)
from listing_radar.ingestion.mailbox import MailMessage

# Registry mapping extractor names to their classes
EXTRACTOR_REGISTRY: dict[str, Type[BaseExtractor]] = {
    "craigslist": CraigslistExtractor,
    "html": HtmlBlockExtractor,
}

DEFAULT_EXTRACTOR = "html"


def get_extractor(
    extractor_type: str,
    config: dict[str, Any] | None = None,
) -> BaseExtractor | None:
    """
    Get an extractor instance by type name.

    Args:
        extractor_type: Name of the extractor (e.g., "craigslist")
        config: Optional custom configuration

    Returns:
        Extractor instance, or None if type not found
    """
    extractor_class = EXTRACTOR_REGISTRY.get(extractor_type)
    if extractor_class is None:
        return None
    return extractor_class(config)


def register_extractor(name: str, extractor_class: Type[BaseExtractor]) -> None:
    """
    Register a new extractor type.

    Args:
        name: Name to register the extractor under
        extractor_class: Extractor class (must inherit from BaseExtractor)
    """
    if not issubclass(extractor_class, BaseExtractor):
        raise TypeError(f"{extractor_class} must inherit from BaseExtractor")
    EXTRACTOR_REGISTRY[name] = extractor_class


def list_extractors() -> list[str]:
    """
    List all registered extractor names.

    Returns:
        List of extractor type names
    """
    return list(EXTRACTOR_REGISTRY.keys())


def select_extractor(message: MailMessage) -> BaseExtractor:
    """
    Pick the strategy for a message.

    The first registered extractor whose sender patterns match wins;
    otherwise the generic HTML block extractor is used.
    """
    for name, extractor_class in EXTRACTOR_REGISTRY.items():
        if name == DEFAULT_EXTRACTOR:
            continue
        extractor = extractor_class()
        if extractor.handles(message):
            return extractor
    return EXTRACTOR_REGISTRY[DEFAULT_EXTRACTOR]()


__all__ = [
    # Registry functions
    "get_extractor",
    "register_extractor",
    "list_extractors",
    "select_extractor",
    "EXTRACTOR_REGISTRY",
    # Base classes
    "BaseExtractor",
    "ListingCandidate",
    # Concrete extractors
    "HtmlBlockExtractor",
    "CraigslistExtractor",
    # Heuristics
    "extract_image",
    "extract_listings",
    "extract_urls",
]
