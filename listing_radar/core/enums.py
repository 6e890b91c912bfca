"""Enums for listing fields."""

from enum import Enum


class ListingSource(str, Enum):
    """Site a listing was posted on."""

    FACEBOOK = "facebook"
    CRAIGSLIST = "craigslist"
    STREETEASY = "streeteasy"
    OTHER = "other"


class IngestMode(str, Enum):
    """How an ingestion run selects messages."""

    WINDOW = "window"  # recent messages, first page only
    BACKFILL = "backfill"  # sender-scoped, paged
