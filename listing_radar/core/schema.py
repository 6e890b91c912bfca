"""Pydantic v2 domain models for Listing Radar.

These models are what the repositories hand back to callers:
- Listing: a deduplicated posting, keyed by the hash of its canonical URL
- ListingEvent: one sighting of a listing inside one alert email
- OAuthCredential: the connected mailbox credential
- IngestResult: counters returned by an ingestion run
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from listing_radar.core.enums import IngestMode, ListingSource


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


class Listing(BaseModel):
    """
    A classified/apartment posting seen in at least one alert email.

    Everything except latest_seen_at is filled once and then left alone.
    """

    id: UUID = Field(default_factory=uuid4)
    url_hash: str = Field(min_length=64, max_length=64)
    url: str
    source: ListingSource = ListingSource.OTHER
    title: str | None = None
    description: str | None = None
    price: float | None = None
    thumbnail_url: str | None = None
    latest_seen_at: datetime = Field(default_factory=_utc_now)
    created_at: datetime = Field(default_factory=_utc_now)


class ListingEvent(BaseModel):
    """A single sighting of a listing in a single email."""

    id: UUID = Field(default_factory=uuid4)
    url_hash: str
    email_message_id: str
    received_at: datetime
    sender: str | None = None
    subject: str | None = None
    snippet: str | None = None
    source: ListingSource = ListingSource.OTHER
    created_at: datetime = Field(default_factory=_utc_now)


class OAuthCredential(BaseModel):
    """Stored OAuth credential for the mailbox."""

    email: str
    refresh_token: str
    access_token: str | None = None
    expiry_date: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)

    def expires_within(self, seconds: int, now: datetime | None = None) -> bool:
        """True when there is no usable access token for the next `seconds`."""
        if not self.access_token or self.expiry_date is None:
            return True
        now = now or _utc_now()
        expiry = self.expiry_date
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=UTC)
        return (expiry - now).total_seconds() < seconds


class IngestResult(BaseModel):
    """Aggregate counters for one ingestion run."""

    mode: IngestMode = IngestMode.WINDOW
    scanned_messages: int = 0
    new_messages: int = 0
    extracted_urls: int = 0
    new_events: int = 0
    new_unique_listings: int = 0
    recent_listings: list[Listing] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utc_now)
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()
