"""End-to-end tests for the ingestion pipeline."""

import base64
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from listing_radar.core.enums import IngestMode, ListingSource
from listing_radar.core.exceptions import NotConnectedError, RateLimitedError, UnauthorizedError
from listing_radar.core.schema import OAuthCredential
from listing_radar.db.engine import create_db_engine
from listing_radar.db.models import Base
from listing_radar.db.repositories import ListingEventRepository, ListingRepository, OAuthTokenRepository
from listing_radar.ingestion.canonicalize import hash_url
from listing_radar.ingestion.credentials import CredentialProvider, GoogleOAuthClient
from listing_radar.ingestion.mailbox import MessageSource
from listing_radar.ingestion.pipeline import IngestionPipeline, IngestRequest
from listing_radar.ingestion.rate_limit import InMemoryRateLimiter
from listing_radar.ingestion.registry import SourceRegistry

LISTING_HTML = '<p><a href="https://example.com/apa/123">2BR apt</a> $2,000</p>'


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message(
    message_id: str,
    html: str = "",
    plain: str = "",
    sender: str = "alerts@example.com",
    subject: str = "New listings",
    received_at: datetime | None = None,
) -> dict[str, Any]:
    received_at = received_at or datetime.now(UTC) - timedelta(minutes=5)
    parts = []
    if plain:
        parts.append({"mimeType": "text/plain", "body": {"data": b64url(plain)}})
    if html:
        parts.append({"mimeType": "text/html", "body": {"data": b64url(html)}})
    return {
        "id": message_id,
        "internalDate": str(int(received_at.timestamp() * 1000)),
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [{"name": "From", "value": sender}, {"name": "Subject", "value": subject}],
            "parts": parts,
        },
    }


class FakeMailbox(MessageSource):
    """In-memory mailbox serving Gmail-format messages."""

    def __init__(self, messages: list[dict[str, Any]], page_size: int | None = None) -> None:
        self.messages = {m["id"]: m for m in messages}
        self.order = [m["id"] for m in messages]
        self.page_size = page_size
        self.queries: list[str] = []
        self.fetched: list[str] = []
        self.closed = False

    async def list_message_ids(self, query, page_size, page_token=None):
        self.queries.append(query)
        size = self.page_size or page_size
        start = int(page_token or 0)
        ids = self.order[start:start + size]
        next_token = str(start + size) if start + size < len(self.order) else None
        return ids, next_token

    async def get_message(self, message_id):
        self.fetched.append(message_id)
        return self.messages[message_id]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def session():
    """Create a test database session."""
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = create_db_engine(Path(tmpdir) / "test_pipeline.db")
        Base.metadata.create_all(engine)
        session = sessionmaker(bind=engine, autoflush=False)()
        yield session
        session.close()
        engine.dispose()


@pytest.fixture
def connected(session):
    """Store a credential that does not need a refresh."""
    OAuthTokenRepository(session).save(OAuthCredential(
        email="me@example.com",
        refresh_token="r1",
        access_token="a1",
        expiry_date=datetime.now(UTC) + timedelta(hours=1),
    ))
    session.commit()
    return session


def offline_oauth() -> GoogleOAuthClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("token endpoint must not be called")

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleOAuthClient("id", "secret", "http://localhost/cb", client=http)


def make_pipeline(
    session,
    mailbox: FakeMailbox,
    limiter: InMemoryRateLimiter | None = None,
    backfill_secret: str | None = None,
) -> IngestionPipeline:
    tokens: list[str] = []

    def factory(access_token: str) -> FakeMailbox:
        tokens.append(access_token)
        return mailbox

    pipeline = IngestionPipeline(
        session,
        factory,
        CredentialProvider(session, offline_oauth()),
        limiter or InMemoryRateLimiter(),
        registry=SourceRegistry.with_defaults(),
        backfill_secret=backfill_secret,
    )
    pipeline.tokens = tokens
    return pipeline


class TestIngestionPipeline:
    """End-to-end tests for IngestionPipeline.run."""

    @pytest.mark.asyncio
    async def test_first_and_second_run(self, connected) -> None:
        """One listing the first time; nothing new the second time."""
        mailbox = FakeMailbox([gmail_message("m1", html=LISTING_HTML)])

        first = await make_pipeline(connected, mailbox).run(IngestRequest(identity="a", minutes=60))

        assert first.mode == IngestMode.WINDOW
        assert first.scanned_messages == 1
        assert first.new_messages == 1
        assert first.extracted_urls == 1
        assert first.new_unique_listings == 1
        assert first.new_events == 1
        assert [x.url for x in first.recent_listings] == ["https://example.com/apa/123"]
        assert mailbox.queries == ["newer_than:60m"]
        assert mailbox.closed

        second = await make_pipeline(connected, mailbox).run(IngestRequest(identity="a", minutes=60))

        assert second.scanned_messages == 1
        assert second.new_messages == 0
        assert second.new_unique_listings == 0
        assert second.new_events == 0
        assert mailbox.fetched == ["m1"]

        listing = ListingRepository(connected).get_by_hash(hash_url("https://example.com/apa/123"))
        assert listing.price == 2000
        assert listing.title == "2BR apt"
        assert listing.source == ListingSource.OTHER
        assert listing.description == "$2,000 · 2 bd"

    @pytest.mark.asyncio
    async def test_same_listing_in_two_emails(self, connected) -> None:
        """A listing repeated in a later email gets a second event, not a second listing."""
        now = datetime.now(UTC)
        mailbox = FakeMailbox([
            gmail_message("m1", html='<p><a href="http://Example.com/apa/123/?utm_source=a">2BR apt</a> 2 bd</p>',
                          received_at=now - timedelta(minutes=20)),
            gmail_message("m2", html='<p><a href="https://example.com/apa/123">Nice 2BR</a> $2,000</p>',
                          received_at=now - timedelta(minutes=10)),
        ])

        result = await make_pipeline(connected, mailbox).run(IngestRequest(minutes=60))

        assert result.new_messages == 2
        assert result.new_unique_listings == 1
        assert result.new_events == 2
        listing = ListingRepository(connected).get_by_hash(hash_url("https://example.com/apa/123"))
        assert listing.title == "2BR apt"
        assert listing.price == 2000
        assert abs((listing.latest_seen_at - (now - timedelta(minutes=10))).total_seconds()) < 1

    @pytest.mark.asyncio
    async def test_duplicate_urls_in_one_message(self, connected) -> None:
        """URLs that canonicalize alike count once per message."""
        html = (
            '<p><a href="https://example.com/apa/1">A</a> $1,000</p>'
            '<p><a href="https://example.com/apa/1/?utm_medium=email">A again</a> $1,000</p>'
        )
        mailbox = FakeMailbox([gmail_message("m1", html=html)])

        result = await make_pipeline(connected, mailbox).run(IngestRequest(minutes=60))

        assert result.extracted_urls == 2
        assert result.new_events == 1
        assert result.new_unique_listings == 1

    @pytest.mark.asyncio
    async def test_rejected_urls_are_skipped(self, connected) -> None:
        """Non-apartment craigslist links and malformed URLs produce nothing."""
        html = (
            '<p><a href="https://newyork.craigslist.org/brk/sss/d/bike/1.html">Bike</a> $100</p>'
            '<p><a href="http://exa mple.com:bad/">Broken</a> $200</p>'
        )
        mailbox = FakeMailbox([gmail_message("m1", html=html)])

        result = await make_pipeline(connected, mailbox).run(IngestRequest(minutes=60))

        assert result.new_messages == 1
        assert result.extracted_urls == 2
        assert result.new_events == 0
        assert ListingRepository(connected).count() == 0

    @pytest.mark.asyncio
    async def test_fallback_snippet_and_subject_title(self, connected) -> None:
        """Fallback URLs use the subject as title and the HTML text as snippet."""
        html = '<div>Check <a href="https://www.facebook.com/marketplace/item/42/">this</a></div>'
        mailbox = FakeMailbox([gmail_message("m1", html=html, subject="Price drop nearby")])

        await make_pipeline(connected, mailbox).run(IngestRequest(minutes=60))

        url_hash = hash_url("https://www.facebook.com/marketplace/item/42")
        listing = ListingRepository(connected).get_by_hash(url_hash)
        assert listing.source == ListingSource.FACEBOOK
        assert listing.title == "Price drop nearby"
        events = ListingEventRepository(connected).list_for_listing(url_hash)
        assert events[0].snippet == "Check this"
        assert events[0].sender == "alerts@example.com"

    @pytest.mark.asyncio
    async def test_rate_limited_before_side_effects(self, connected) -> None:
        """A denied caller gets RateLimitedError and nothing is read or written."""
        limiter = InMemoryRateLimiter()
        mailbox = FakeMailbox([gmail_message("m1", html=LISTING_HTML)])
        await limiter.try_acquire("1.2.3.4", 30)

        pipeline = make_pipeline(connected, mailbox, limiter=limiter)
        with pytest.raises(RateLimitedError):
            await pipeline.run(IngestRequest(identity="1.2.3.4"))

        assert mailbox.queries == []
        assert pipeline.tokens == []
        assert ListingRepository(connected).count() == 0

    @pytest.mark.asyncio
    async def test_not_connected(self, session) -> None:
        """Without a credential the run fails before touching the mailbox."""
        mailbox = FakeMailbox([gmail_message("m1", html=LISTING_HTML)])
        with pytest.raises(NotConnectedError):
            await make_pipeline(session, mailbox).run(IngestRequest())
        assert mailbox.queries == []


class TestBackfill:
    """Tests for backfill runs."""

    @pytest.mark.asyncio
    async def test_backfill_pages_with_secret(self, connected) -> None:
        """The secret bypasses the limiter; pages are followed up to the ceiling."""
        messages = [
            gmail_message(f"m{i}", html=f'<p><a href="https://example.com/apa/{i}">Unit {i}</a> $1,{i}00</p>')
            for i in range(5)
        ]
        mailbox = FakeMailbox(messages, page_size=2)
        limiter = InMemoryRateLimiter()
        await limiter.try_acquire("ops", 30)

        pipeline = make_pipeline(connected, mailbox, limiter=limiter, backfill_secret="s3cret")
        result = await pipeline.run(
            IngestRequest(identity="ops", backfill=True, secret="s3cret", days=7, max_pages=2)
        )

        assert result.mode == IngestMode.BACKFILL
        assert result.scanned_messages == 4
        assert result.new_unique_listings == 4
        assert result.recent_listings == []
        assert mailbox.queries[0].startswith("from:(")
        assert mailbox.queries[0].endswith("newer_than:7d")

    @pytest.mark.asyncio
    async def test_backfill_wrong_secret(self, connected) -> None:
        """A wrong or missing secret is rejected."""
        mailbox = FakeMailbox([])
        pipeline = make_pipeline(connected, mailbox, backfill_secret="s3cret")

        with pytest.raises(UnauthorizedError):
            await pipeline.run(IngestRequest(backfill=True, secret="nope"))
        with pytest.raises(UnauthorizedError):
            await pipeline.run(IngestRequest(backfill=True))
        assert mailbox.queries == []

    @pytest.mark.asyncio
    async def test_backfill_disabled_without_configured_secret(self, connected) -> None:
        """Backfill is unavailable when no secret is configured."""
        pipeline = make_pipeline(connected, FakeMailbox([]))
        with pytest.raises(UnauthorizedError):
            await pipeline.run(IngestRequest(backfill=True, secret=""))
