"""Error types raised by the ingestion core."""

from __future__ import annotations


class ListingRadarError(Exception):
    """Base class for all Listing Radar errors."""


class ConfigurationError(ListingRadarError):
    """A required setting is missing or invalid."""


class NotConnectedError(ListingRadarError):
    """No mailbox credential has been connected yet."""

    def __init__(self, message: str = "No connected Gmail account. Run `listing-radar auth url` first.") -> None:
        super().__init__(message)


class RateLimitedError(ListingRadarError):
    """The caller already ran an ingestion inside the current window."""

    def __init__(self, identity: str, retry_after: int) -> None:
        self.identity = identity
        self.retry_after = retry_after
        super().__init__(f"Rate limit: one ingest every {retry_after} seconds per caller")


class UnauthorizedError(ListingRadarError):
    """Backfill was requested without the shared backfill secret."""


class UpstreamError(ListingRadarError):
    """The mail source or the token endpoint returned an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
