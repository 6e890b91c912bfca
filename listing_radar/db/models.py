"""SQLAlchemy ORM models for the Listing Radar database."""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import DateTime, Float, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ListingDB(Base):
    """
    Database model for deduplicated listings.

    url_hash is the identity; url holds the canonical form it was computed from.
    """

    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    url_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="other", index=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    latest_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    events: Mapped[list["ListingEventDB"]] = relationship(
        "ListingEventDB", back_populates="listing"
    )

    def __repr__(self) -> str:
        return f"<ListingDB(url_hash={self.url_hash[:12]}, source={self.source}, url='{self.url}')>"


class ListingEventDB(Base):
    """
    Database model for listing sightings.

    Append-only; one row per (email message, listing).
    """

    __tablename__ = "listing_events"
    __table_args__ = (
        UniqueConstraint("email_message_id", "url_hash", name="uq_listing_events_message_url"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    url_hash: Mapped[str] = mapped_column(
        String(64), ForeignKey("listings.url_hash"), nullable=False, index=True
    )
    email_message_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    sender: Mapped[str | None] = mapped_column(Text, nullable=True)
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="other")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    listing: Mapped["ListingDB"] = relationship("ListingDB", back_populates="events")

    def __repr__(self) -> str:
        return f"<ListingEventDB(message={self.email_message_id}, url_hash={self.url_hash[:12]})>"


class OAuthTokenDB(Base):
    """Database model for the connected mailbox credential."""

    __tablename__ = "oauth_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    def __repr__(self) -> str:
        return f"<OAuthTokenDB(email='{self.email}')>"
