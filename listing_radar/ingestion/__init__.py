"""
Listing Radar Ingestion
=======================

Turns listing-alert emails into deduplicated listings.

Pipeline Stages:
1. Gate - Per-caller rate limit, or the backfill secret
2. Authenticate - Refresh the stored Gmail credential when needed
3. Enumerate - Page through message ids, skipping already ingested ones
4. Extract - Sender-specific or generic HTML block heuristics
5. Canonicalize - Unwrap redirects, strip tracking, hash the URL
6. Persist - Fill-once listing merge and one sighting per email
"""

from listing_radar.ingestion.canonicalize import (
    canonicalize_url,
    hash_url,
)
from listing_radar.ingestion.mailbox import (
    MailMessage,
    MessageSource,
    decode_message,
    iter_message_ids,
)
from listing_radar.ingestion.gmail import GmailClient
from listing_radar.ingestion.registry import (
    SourceRegistry,
    SourceConfig,
    GlobalConfig,
    get_default_registry,
)
from listing_radar.ingestion.rate_limit import (
    RateLimiter,
    InMemoryRateLimiter,
    RedisRateLimiter,
    FallbackRateLimiter,
    enforce_rate_limit,
)
from listing_radar.ingestion.credentials import (
    CredentialProvider,
    GoogleOAuthClient,
)
from listing_radar.ingestion.pipeline import (
    IngestionPipeline,
    IngestRequest,
)
from listing_radar.ingestion.jobs import (
    ingest_mailbox,
    enqueue_ingestion,
    get_job_status,
    run_ingestion,
    JobResult,
    JobStatus,
)

__all__ = [
    # Canonicalization
    "canonicalize_url",
    "hash_url",
    # Mailbox
    "MailMessage",
    "MessageSource",
    "decode_message",
    "iter_message_ids",
    "GmailClient",
    # Registry
    "SourceRegistry",
    "SourceConfig",
    "GlobalConfig",
    "get_default_registry",
    # Rate limiting
    "RateLimiter",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "FallbackRateLimiter",
    "enforce_rate_limit",
    # Credentials
    "CredentialProvider",
    "GoogleOAuthClient",
    # Pipeline
    "IngestionPipeline",
    "IngestRequest",
    # Jobs
    "ingest_mailbox",
    "enqueue_ingestion",
    "get_job_status",
    "run_ingestion",
    "JobResult",
    "JobStatus",
]
