"""Repository classes for listing, sighting and credential persistence."""

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from listing_radar.core.enums import ListingSource
from listing_radar.core.schema import Listing, ListingEvent, OAuthCredential
from listing_radar.db.models import ListingDB, ListingEventDB, OAuthTokenDB

logger = logging.getLogger(__name__)

# Fields that are written once and never overwritten by later sightings.
FILL_ONCE_FIELDS = ("title", "description", "price", "thumbnail_url")


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class ListingRepository:
    """Repository for Listing persistence and fill-once merging."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, listing: Listing) -> Listing:
        """Create a new listing."""
        db_item = ListingDB(
            id=str(listing.id),
            url_hash=listing.url_hash,
            url=listing.url,
            source=listing.source.value,
            title=listing.title,
            description=listing.description,
            price=listing.price,
            thumbnail_url=listing.thumbnail_url,
            latest_seen_at=listing.latest_seen_at,
            created_at=listing.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_hash(self, url_hash: str) -> Listing | None:
        """Get a listing by the hash of its canonical URL."""
        db_item = self._get_db(url_hash)
        return self._to_domain(db_item) if db_item else None

    def get_by_id(self, listing_id: UUID | str) -> Listing | None:
        """Get a listing by ID."""
        stmt = select(ListingDB).where(ListingDB.id == str(listing_id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def merge(self, url_hash: str, incoming: Listing) -> Listing:
        """
        Merge a new sighting into an existing listing.

        Only null fill-once fields are populated; latest_seen_at moves to
        the later of the stored and incoming values.

        Raises:
            ValueError: If no listing exists for url_hash
        """
        db_item = self._get_db(url_hash)
        if db_item is None:
            raise ValueError(f"Listing with url_hash {url_hash} not found")

        for field_name in FILL_ONCE_FIELDS:
            if getattr(db_item, field_name) is None:
                value = getattr(incoming, field_name)
                if value is not None:
                    setattr(db_item, field_name, value)

        current = _as_utc(db_item.latest_seen_at)
        seen_at = _as_utc(incoming.latest_seen_at)
        if current is None or seen_at > current:
            db_item.latest_seen_at = seen_at

        self.session.flush()
        return self._to_domain(db_item)

    def record_sighting(self, incoming: Listing) -> tuple[Listing, bool]:
        """
        Create the listing on first sighting, merge it otherwise.

        A concurrent writer may create the same url_hash between our lookup
        and insert; the unique constraint then fails and we merge instead.

        Returns:
            Tuple of (stored listing, whether it was newly created)
        """
        if self._get_db(incoming.url_hash) is not None:
            return self.merge(incoming.url_hash, incoming), False

        try:
            with self.session.begin_nested():
                created = self.create(incoming)
            return created, True
        except IntegrityError:
            logger.debug(f"Listing {incoming.url_hash[:12]} created concurrently, merging")
            return self.merge(incoming.url_hash, incoming), False

    def list_recent(
        self,
        since: datetime,
        source: ListingSource | str | None = None,
        query: str | None = None,
        limit: int = 200,
    ) -> list[Listing]:
        """List listings seen since a point in time, newest first."""
        stmt = select(ListingDB).where(ListingDB.latest_seen_at >= since)
        if source is not None and source != "all":
            stmt = stmt.where(ListingDB.source == ListingSource(source).value)
        if query:
            pattern = f"%{query.strip()}%"
            stmt = stmt.where(or_(ListingDB.title.ilike(pattern), ListingDB.url.ilike(pattern)))
        stmt = stmt.order_by(ListingDB.latest_seen_at.desc()).limit(limit)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(item) for item in result]

    def count(self) -> int:
        """Get total count of listings."""
        stmt = select(func.count()).select_from(ListingDB)
        return self.session.execute(stmt).scalar() or 0

    def _get_db(self, url_hash: str) -> ListingDB | None:
        stmt = select(ListingDB).where(ListingDB.url_hash == url_hash)
        return self.session.execute(stmt).scalar_one_or_none()

    def _to_domain(self, db_item: ListingDB) -> Listing:
        """Convert DB model to domain model."""
        return Listing(
            id=UUID(db_item.id),
            url_hash=db_item.url_hash,
            url=db_item.url,
            source=ListingSource(db_item.source),
            title=db_item.title,
            description=db_item.description,
            price=db_item.price,
            thumbnail_url=db_item.thumbnail_url,
            latest_seen_at=_as_utc(db_item.latest_seen_at),
            created_at=_as_utc(db_item.created_at),
        )


class ListingEventRepository:
    """Repository for the append-only ListingEvent log."""

    def __init__(self, session: Session):
        self.session = session

    def create_if_absent(self, event: ListingEvent) -> bool:
        """
        Append a sighting.

        Returns:
            True if a row was written, False if (message, listing) was
            already recorded.
        """
        db_item = ListingEventDB(
            id=str(event.id),
            url_hash=event.url_hash,
            email_message_id=event.email_message_id,
            received_at=event.received_at,
            sender=event.sender,
            subject=event.subject,
            snippet=event.snippet,
            source=event.source.value,
            created_at=event.created_at,
        )
        try:
            with self.session.begin_nested():
                self.session.add(db_item)
                self.session.flush()
        except IntegrityError:
            logger.debug(
                f"Duplicate event for message {event.email_message_id} "
                f"and listing {event.url_hash[:12]}"
            )
            return False
        return True

    def find_seen_message_ids(self, message_ids: Iterable[str]) -> set[str]:
        """Return the subset of message_ids that already produced an event."""
        ids = list(message_ids)
        if not ids:
            return set()
        stmt = (
            select(ListingEventDB.email_message_id)
            .where(ListingEventDB.email_message_id.in_(ids))
            .distinct()
        )
        return set(self.session.execute(stmt).scalars().all())

    def list_for_listing(self, url_hash: str) -> list[ListingEvent]:
        """Get all sightings of a listing, oldest first."""
        stmt = (
            select(ListingEventDB)
            .where(ListingEventDB.url_hash == url_hash)
            .order_by(ListingEventDB.received_at)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(item) for item in result]

    def last_received_at(self) -> datetime | None:
        """Receipt time of the newest ingested email, if any."""
        stmt = select(func.max(ListingEventDB.received_at))
        return _as_utc(self.session.execute(stmt).scalar())

    def count(self) -> int:
        """Get total count of events."""
        stmt = select(func.count()).select_from(ListingEventDB)
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, db_item: ListingEventDB) -> ListingEvent:
        """Convert DB model to domain model."""
        return ListingEvent(
            id=UUID(db_item.id),
            url_hash=db_item.url_hash,
            email_message_id=db_item.email_message_id,
            received_at=_as_utc(db_item.received_at),
            sender=db_item.sender,
            subject=db_item.subject,
            snippet=db_item.snippet,
            source=ListingSource(db_item.source),
            created_at=_as_utc(db_item.created_at),
        )


class OAuthTokenRepository:
    """Repository for the stored mailbox credential."""

    def __init__(self, session: Session):
        self.session = session

    def get_active(self) -> OAuthCredential | None:
        """Get the most recently connected credential."""
        stmt = select(OAuthTokenDB).order_by(OAuthTokenDB.created_at.desc()).limit(1)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def save(self, credential: OAuthCredential) -> OAuthCredential:
        """Insert or replace the credential for credential.email."""
        stmt = select(OAuthTokenDB).where(OAuthTokenDB.email == credential.email)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            db_item = OAuthTokenDB(email=credential.email, created_at=credential.created_at)
            self.session.add(db_item)

        db_item.refresh_token = credential.refresh_token
        db_item.access_token = credential.access_token
        db_item.expiry_date = credential.expiry_date
        self.session.flush()
        return self._to_domain(db_item)

    def _to_domain(self, db_item: OAuthTokenDB) -> OAuthCredential:
        """Convert DB model to domain model."""
        return OAuthCredential(
            email=db_item.email,
            refresh_token=db_item.refresh_token,
            access_token=db_item.access_token,
            expiry_date=_as_utc(db_item.expiry_date),
            created_at=_as_utc(db_item.created_at),
        )
