"""
Extractor Base Module
=====================

Defines the abstract base class for sender-specific extraction strategies.
Each strategy decides whether it handles a message (by sender) and turns
the message into listing candidates.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any

from listing_radar.ingestion.extractors.html import (
    ListingCandidate,
    extract_image,
    extract_listings,
    extract_urls,
)
from listing_radar.ingestion.mailbox import MailMessage


class BaseExtractor(ABC):
    """
    Abstract base class for extraction strategies.

    Subclasses must implement:
    - extract: Turn a decoded message into listing candidates
    """

    # Extractor identification (override in subclasses)
    EXTRACTOR_NAME: str = "base"
    EXTRACTOR_VERSION: str = "1.0.0"

    # Regexes matched against the From header
    SENDER_PATTERNS: tuple[str, ...] = ()

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        """
        Initialize the extractor.

        Args:
            config: Optional custom configuration
        """
        self.config = config or {}
        self._sender_patterns = [re.compile(p, re.IGNORECASE) for p in self.SENDER_PATTERNS]

    def handles(self, message: MailMessage) -> bool:
        """Check whether this strategy is meant for the message's sender."""
        if not message.sender:
            return False
        return any(p.search(message.sender) for p in self._sender_patterns)

    @abstractmethod
    def extract(self, message: MailMessage) -> list[ListingCandidate]:
        """
        Extract listing candidates from a message.

        Args:
            message: Decoded email

        Returns:
            Candidates with raw (not yet canonical) URLs
        """
        pass

    def get_info(self) -> dict[str, str]:
        """Get extractor information."""
        return {
            "name": self.EXTRACTOR_NAME,
            "version": self.EXTRACTOR_VERSION,
            "class": self.__class__.__name__,
        }


class HtmlBlockExtractor(BaseExtractor):
    """
    Default strategy: paragraph-block heuristics over the HTML body.

    When no block carries a listing signal, every URL in the message is
    returned instead, each with the message-level image.
    """

    EXTRACTOR_NAME = "html"

    def extract(self, message: MailMessage) -> list[ListingCandidate]:
        candidates = extract_listings(message.text_html)
        if candidates:
            return candidates
        return self.fallback(message)

    def fallback(self, message: MailMessage) -> list[ListingCandidate]:
        """Generic URL scan of both bodies."""
        image = extract_image(message.text_html)
        return [
            ListingCandidate(url=url, image=image)
            for url in extract_urls(message.text_plain, message.text_html)
        ]
