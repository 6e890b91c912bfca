"""Craigslist saved-search alerts."""

from __future__ import annotations

from listing_radar.ingestion.extractors.base import HtmlBlockExtractor
from listing_radar.ingestion.extractors.html import ListingCandidate, parse_price
from listing_radar.ingestion.mailbox import MailMessage


def parse_subject(subject: str | None) -> tuple[float | None, str | None]:
    """
    Split a Craigslist alert subject into price and title.

    Subjects look like "cl brooklyn - $2,450 - Sunny 1BR near park";
    the title is everything after the second " - ".

    Returns:
        Tuple of (price, title)
    """
    if not subject:
        return None, None
    price = parse_price(subject)
    parts = [p.strip() for p in subject.split(" - ")]
    if len(parts) >= 3:
        title = " - ".join(parts[2:]).strip()
    else:
        title = subject.strip()
    return price, title or None


class CraigslistExtractor(HtmlBlockExtractor):
    """
    Block heuristics, plus price and title from the alert subject.

    Subject metadata only applies to links back to craigslist itself.
    """

    EXTRACTOR_NAME = "craigslist"
    SENDER_PATTERNS = (r"craigslist\.org",)

    def extract(self, message: MailMessage) -> list[ListingCandidate]:
        candidates = super().extract(message)
        price, title = parse_subject(message.subject)
        for candidate in candidates:
            if "craigslist.org" not in candidate.url.lower():
                continue
            if candidate.price is None:
                candidate.price = price
            if candidate.text is None:
                candidate.text = title
        return candidates
