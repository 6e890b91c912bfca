"""
Background Jobs Module
======================

Defines arq tasks for mailbox ingestion, including the 15-minute cron
trigger. Uses Redis as the job queue backend.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from arq import create_pool, cron
from arq.connections import RedisSettings
from arq.jobs import Job
from arq.jobs import JobStatus as ArqJobStatus

from listing_radar.core.exceptions import ListingRadarError
from listing_radar.core.schema import IngestResult
from listing_radar.db.engine import get_session
from listing_radar.ingestion.credentials import CredentialProvider, GoogleOAuthClient
from listing_radar.ingestion.gmail import GmailClient
from listing_radar.ingestion.pipeline import IngestionPipeline, IngestRequest
from listing_radar.ingestion.rate_limit import (
    FallbackRateLimiter,
    RateLimiter,
    RedisRateLimiter,
    create_rate_limiter,
)
from listing_radar.ingestion.registry import SourceRegistry, get_default_registry

logger = logging.getLogger(__name__)

CRON_IDENTITY = "cron"


class JobStatus(str, Enum):
    """Status of an ingestion job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobResult:
    """Result of an ingestion job."""

    job_id: str
    identity: str
    status: JobStatus
    mode: str = "window"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    scanned_messages: int = 0
    new_messages: int = 0
    extracted_urls: int = 0
    new_events: int = 0
    new_unique_listings: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    def apply(self, result: IngestResult) -> None:
        """Copy the counters of a finished run."""
        self.mode = result.mode.value
        self.scanned_messages = result.scanned_messages
        self.new_messages = result.new_messages
        self.extracted_urls = result.extracted_urls
        self.new_events = result.new_events
        self.new_unique_listings = result.new_unique_listings

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "identity": self.identity,
            "status": self.status.value,
            "mode": self.mode,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "scanned_messages": self.scanned_messages,
            "new_messages": self.new_messages,
            "extracted_urls": self.extracted_urls,
            "new_events": self.new_events,
            "new_unique_listings": self.new_unique_listings,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    redis_url = os.environ.get("REDIS_URL")
    if redis_url:
        return RedisSettings.from_dsn(redis_url)
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


# Process-wide limiter for callers outside the worker
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide rate limiter (Redis when REDIS_URL is set)."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = create_rate_limiter(os.environ.get("REDIS_URL"))
    return _rate_limiter


async def run_ingestion(
    request: IngestRequest,
    rate_limiter: RateLimiter | None = None,
    registry: SourceRegistry | None = None,
    oauth_client: GoogleOAuthClient | None = None,
) -> IngestResult:
    """
    Run one ingestion with the default collaborators.

    Wires the database session, Gmail client, credential provider, rate
    limiter and source registry, then runs the pipeline. Errors propagate.

    Args:
        request: Run parameters
        rate_limiter: Limiter to use instead of the process-wide one
        registry: Source registry instead of the default one
        oauth_client: OAuth client instead of one built from the environment

    Returns:
        IngestResult
    """
    registry = registry or get_default_registry()
    settings = registry.global_config
    oauth_client = oauth_client or GoogleOAuthClient.from_env()
    limiter = rate_limiter or get_rate_limiter()

    def gmail_factory(access_token: str) -> GmailClient:
        return GmailClient(access_token, timeout=settings.request_timeout)

    with get_session() as session:
        credentials = CredentialProvider(session, oauth_client, settings.refresh_margin_seconds)
        pipeline = IngestionPipeline(
            session,
            gmail_factory,
            credentials,
            limiter,
            registry=registry,
            backfill_secret=os.environ.get("BACKFILL_SECRET"),
        )
        return await pipeline.run(request)


async def ingest_mailbox(
    ctx: dict[str, Any],
    minutes: int | None = None,
    backfill: bool = False,
    secret: str | None = None,
    days: int | None = None,
    max_pages: int | None = None,
    identity: str = "worker",
) -> dict[str, Any]:
    """
    Main ingestion task.

    Args:
        ctx: arq context (contains Redis connection)
        minutes: Window size for a window run
        backfill: Run a sender-filtered backfill instead
        secret: Backfill secret
        days: Backfill horizon
        max_pages: Backfill page ceiling
        identity: Caller identity for rate limiting

    Returns:
        JobResult as dictionary
    """
    job_id = ctx.get("job_id", str(uuid4()))
    result = JobResult(
        job_id=job_id,
        identity=identity,
        status=JobStatus.RUNNING,
        started_at=datetime.now(UTC),
    )
    request = IngestRequest(
        identity=identity,
        minutes=minutes,
        backfill=backfill,
        secret=secret,
        days=days,
        max_pages=max_pages,
    )

    try:
        outcome = await run_ingestion(request, rate_limiter=ctx.get("rate_limiter"))
        result.apply(outcome)
        result.status = JobStatus.COMPLETED

    except ListingRadarError as e:
        logger.warning(f"Ingestion job {job_id} rejected: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))

    except Exception as e:
        logger.exception(f"Ingestion job failed: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))

    finally:
        result.completed_at = datetime.now(UTC)
        if result.started_at and result.completed_at:
            result.duration_seconds = (result.completed_at - result.started_at).total_seconds()

    return result.to_dict()


async def scheduled_ingest(ctx: dict[str, Any]) -> dict[str, Any]:
    """Cron trigger: window run under the shared "cron" identity."""
    return await ingest_mailbox(ctx, identity=CRON_IDENTITY)


async def enqueue_ingestion(
    minutes: int | None = None,
    backfill: bool = False,
    secret: str | None = None,
    days: int | None = None,
    max_pages: int | None = None,
    identity: str = "cli",
) -> str:
    """
    Enqueue an ingestion job for async processing.

    Returns:
        Job ID
    """
    redis = await create_pool(get_redis_settings())
    job = await redis.enqueue_job(
        "ingest_mailbox",
        minutes,
        backfill,
        secret,
        days,
        max_pages,
        identity,
    )
    await redis.close()
    return job.job_id


async def get_job_status(job_id: str) -> dict[str, Any] | None:
    """
    Get the status of an ingestion job.

    Args:
        job_id: Job ID to look up

    Returns:
        Job info dict, or None if not found
    """
    redis = await create_pool(get_redis_settings())
    try:
        job = Job(job_id, redis)
        status = await job.status()
        if status == ArqJobStatus.not_found:
            return None
        info = await job.info()
        job_result = await job.result_info()
    finally:
        await redis.close()

    return {
        "job_id": job_id,
        "status": status.value,
        "enqueued_at": info.enqueue_time.isoformat() if info else None,
        "result": job_result.result if job_result else None,
    }


async def startup(ctx: dict[str, Any]) -> None:
    """Share one Redis-backed limiter across the worker's jobs."""
    ctx["rate_limiter"] = FallbackRateLimiter(RedisRateLimiter(ctx["redis"]))


class WorkerSettings:
    """arq worker settings."""

    functions = [ingest_mailbox]
    cron_jobs = [cron(scheduled_ingest, minute=set(range(0, 60, 15)), run_at_startup=False)]
    on_startup = startup
    redis_settings = get_redis_settings()
    max_jobs = 1
    job_timeout = 900
    keep_result = 86400  # 24 hours
