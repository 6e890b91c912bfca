"""Tests for the arq job layer."""

import pytest

from listing_radar.core.enums import IngestMode
from listing_radar.core.exceptions import RateLimitedError
from listing_radar.core.schema import IngestResult
from listing_radar.ingestion import jobs
from listing_radar.ingestion.jobs import (
    CRON_IDENTITY,
    JobStatus,
    WorkerSettings,
    get_redis_settings,
    ingest_mailbox,
    scheduled_ingest,
)


class TestIngestMailbox:
    """Tests for the ingest_mailbox task."""

    @pytest.mark.asyncio
    async def test_completed_result(self, monkeypatch) -> None:
        """Counters of a finished run are reported."""
        requests = []

        async def fake_run(request, rate_limiter=None, registry=None, oauth_client=None):
            requests.append((request, rate_limiter))
            return IngestResult(mode=IngestMode.WINDOW, scanned_messages=3, new_messages=2,
                                extracted_urls=4, new_events=4, new_unique_listings=1)

        monkeypatch.setattr(jobs, "run_ingestion", fake_run)
        limiter = object()

        result = await ingest_mailbox({"job_id": "job-1", "rate_limiter": limiter}, minutes=30, identity="1.2.3.4")

        assert result["job_id"] == "job-1"
        assert result["status"] == JobStatus.COMPLETED.value
        assert result["new_unique_listings"] == 1
        assert result["scanned_messages"] == 3
        assert result["duration_seconds"] is not None
        request, used_limiter = requests[0]
        assert request.minutes == 30
        assert request.identity == "1.2.3.4"
        assert used_limiter is limiter

    @pytest.mark.asyncio
    async def test_failed_result(self, monkeypatch) -> None:
        """Domain errors mark the job failed with the message."""

        async def fake_run(request, rate_limiter=None, registry=None, oauth_client=None):
            raise RateLimitedError(request.identity, 30)

        monkeypatch.setattr(jobs, "run_ingestion", fake_run)

        result = await ingest_mailbox({}, identity="cron")

        assert result["status"] == JobStatus.FAILED.value
        assert "Rate limit" in result["errors"][0]

    @pytest.mark.asyncio
    async def test_scheduled_ingest_uses_cron_identity(self, monkeypatch) -> None:
        """The cron trigger runs a window ingestion as 'cron'."""
        identities = []

        async def fake_run(request, rate_limiter=None, registry=None, oauth_client=None):
            identities.append(request.identity)
            assert request.backfill is False
            return IngestResult()

        monkeypatch.setattr(jobs, "run_ingestion", fake_run)

        await scheduled_ingest({"job_id": "cron-1"})
        assert identities == [CRON_IDENTITY]


class TestWorkerSettings:
    """Tests for worker configuration."""

    def test_cron_every_fifteen_minutes(self) -> None:
        """The cron job fires on the quarter hours."""
        assert len(WorkerSettings.cron_jobs) == 1
        assert WorkerSettings.cron_jobs[0].minute == {0, 15, 30, 45}
        assert ingest_mailbox in WorkerSettings.functions

    def test_redis_settings_from_url(self, monkeypatch) -> None:
        """REDIS_URL wins over host/port variables."""
        monkeypatch.setenv("REDIS_URL", "redis://cache.local:6380/2")
        settings = get_redis_settings()
        assert settings.host == "cache.local"
        assert settings.port == 6380
        assert settings.database == 2

    def test_redis_settings_from_parts(self, monkeypatch) -> None:
        """Host, port and db variables are used without REDIS_URL."""
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.setenv("REDIS_HOST", "redis")
        monkeypatch.setenv("REDIS_PORT", "6379")
        monkeypatch.setenv("REDIS_DB", "1")
        settings = get_redis_settings()
        assert settings.host == "redis"
        assert settings.database == 1
