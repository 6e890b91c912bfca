"""
Ingestion Pipeline Module
=========================

One ingestion run over the connected mailbox:

1. Gate the caller (rate limit, or the backfill secret)
2. Get a valid credential
3. Enumerate message ids and drop those already ingested
4. Extract, canonicalize, classify and hash listing URLs per message
5. Merge-or-create listings and append sightings
6. Commit per message and report counters
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from listing_radar.core.enums import IngestMode
from listing_radar.core.exceptions import UnauthorizedError
from listing_radar.core.schema import IngestResult, Listing, ListingEvent
from listing_radar.db.repositories import ListingEventRepository, ListingRepository
from listing_radar.ingestion.canonicalize import canonicalize_url, hash_url
from listing_radar.ingestion.credentials import CredentialProvider
from listing_radar.ingestion.extractors import select_extractor
from listing_radar.ingestion.extractors.html import strip_tags
from listing_radar.ingestion.gmail import sender_query, window_query
from listing_radar.ingestion.mailbox import MailMessage, MessageSource, decode_message, iter_message_ids
from listing_radar.ingestion.rate_limit import RateLimiter, enforce_rate_limit
from listing_radar.ingestion.registry import SourceRegistry, get_default_registry

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 200


@dataclass
class IngestRequest:
    """Parameters of one ingestion run."""

    identity: str = "local"
    minutes: int | None = None
    backfill: bool = False
    secret: str | None = None
    days: int | None = None
    max_pages: int | None = None
    page_size: int | None = None

    @property
    def mode(self) -> IngestMode:
        return IngestMode.BACKFILL if self.backfill else IngestMode.WINDOW


@dataclass
class _MessageCounts:
    extracted_urls: int = 0
    new_events: int = 0
    new_unique_listings: int = 0


def _snippet(message: MailMessage) -> str | None:
    snippet = message.snippet(SNIPPET_LENGTH)
    if snippet is None and message.text_html:
        snippet = strip_tags(message.text_html)[:SNIPPET_LENGTH] or None
    return snippet


class IngestionPipeline:
    """
    Turns alert emails into deduplicated listings.

    Collaborators are injected so runs can be driven by the CLI, the arq
    worker or tests alike.
    """

    def __init__(
        self,
        session: Session,
        source_factory: Callable[[str], MessageSource],
        credentials: CredentialProvider,
        rate_limiter: RateLimiter,
        registry: SourceRegistry | None = None,
        backfill_secret: str | None = None,
    ) -> None:
        """
        Args:
            session: Database session; committed once per message
            source_factory: Builds a MessageSource from an access token
            credentials: Provider of the mailbox credential
            rate_limiter: Per-identity gate for window runs
            registry: Source rules; defaults to the global registry
            backfill_secret: Shared secret that unlocks backfill runs
        """
        self.session = session
        self.source_factory = source_factory
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self.registry = registry or get_default_registry()
        self.backfill_secret = backfill_secret
        self.listings = ListingRepository(session)
        self.events = ListingEventRepository(session)

    async def run(self, request: IngestRequest) -> IngestResult:
        """
        Execute one run.

        Raises:
            UnauthorizedError: Backfill requested with a wrong or missing secret
            RateLimitedError: The identity already ran inside the window
            NotConnectedError: No mailbox credential stored
            UpstreamError: Mail source or token endpoint failure
        """
        settings = self.registry.global_config
        await self._gate(request, settings.rate_limit_window_seconds)

        result = IngestResult(mode=request.mode)
        credential = await self.credentials.get_valid_credential()
        page_size = request.page_size or settings.page_size
        minutes = request.minutes or settings.window_minutes

        if request.backfill:
            days = request.days or settings.backfill_days
            query = sender_query(self.registry.senders(), days)
            max_pages = request.max_pages or settings.backfill_max_pages
            logger.info(f"Backfill: days={days} max_pages={max_pages}")
        else:
            query = window_query(minutes)
            max_pages = 1

        source = self.source_factory(credential.access_token or "")
        try:
            ids = await iter_message_ids(source, query, page_size, max_pages)
            result.scanned_messages = len(ids)
            if not request.backfill:
                logger.info(f"Window: minutes={minutes} messages={len(ids)}")

            already = self.events.find_seen_message_ids(ids)
            for message_id in ids:
                if message_id in already:
                    continue
                result.new_messages += 1
                raw = await source.get_message(message_id)
                counts = self._ingest_message(decode_message(raw), message_id)
                self.session.commit()

                result.extracted_urls += counts.extracted_urls
                result.new_events += counts.new_events
                result.new_unique_listings += counts.new_unique_listings
        finally:
            await source.aclose()

        logger.info(
            f"Ingest done: new_messages={result.new_messages} "
            f"extracted_urls={result.extracted_urls} new_events={result.new_events} "
            f"new_unique_listings={result.new_unique_listings}"
        )

        if not request.backfill:
            since = datetime.now(UTC) - timedelta(minutes=minutes)
            result.recent_listings = self.listings.list_recent(since)

        result.completed_at = datetime.now(UTC)
        return result

    async def _gate(self, request: IngestRequest, window_seconds: int) -> None:
        if request.backfill:
            if not self.backfill_secret or not hmac.compare_digest(
                (request.secret or "").encode(), self.backfill_secret.encode()
            ):
                raise UnauthorizedError("Backfill requires the backfill secret")
            return
        await enforce_rate_limit(self.rate_limiter, request.identity, window_seconds)

    def _ingest_message(self, message: MailMessage, message_id: str) -> _MessageCounts:
        counts = _MessageCounts()
        extractor = select_extractor(message)
        candidates = extractor.extract(message)
        counts.extracted_urls = len(candidates)
        snippet = _snippet(message)
        seen: set[str] = set()

        for candidate in candidates:
            url = canonicalize_url(candidate.url)
            if url is None:
                logger.debug(f"Skipping malformed URL {candidate.url[:80]}")
                continue
            source = self.registry.classify(url)
            if source is None:
                logger.debug(f"Skipping non-listing URL {url[:80]}")
                continue
            url_hash = hash_url(url)
            if url_hash in seen:
                continue
            seen.add(url_hash)

            incoming = Listing(
                url_hash=url_hash,
                url=url,
                source=source,
                title=candidate.text or message.subject,
                description=candidate.description,
                price=candidate.price,
                thumbnail_url=candidate.image,
                latest_seen_at=message.received_at,
            )
            _, created = self.listings.record_sighting(incoming)
            if created:
                counts.new_unique_listings += 1

            event = ListingEvent(
                url_hash=url_hash,
                email_message_id=message_id,
                received_at=message.received_at,
                sender=message.sender,
                subject=message.subject,
                snippet=snippet,
                source=source,
            )
            if self.events.create_if_absent(event):
                counts.new_events += 1

        return counts
