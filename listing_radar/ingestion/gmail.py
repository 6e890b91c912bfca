"""
Gmail Client Module
===================

MessageSource implementation over the Gmail REST API (users.messages.list
and users.messages.get), plus the search queries the pipeline sends it.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from listing_radar.core.exceptions import UpstreamError
from listing_radar.ingestion.mailbox import MessageSource

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"


def window_query(minutes: int) -> str:
    """Query for messages received in the last `minutes` minutes."""
    return f"newer_than:{int(minutes)}m"


def sender_query(senders: list[str], days: int) -> str:
    """Query for messages from any of `senders` in the last `days` days."""
    if not senders:
        return f"newer_than:{int(days)}d"
    return f"from:({' OR '.join(senders)}) newer_than:{int(days)}d"


class GmailClient(MessageSource):
    """
    Gmail API client authenticated with a bearer access token.

    Usage:
        async with GmailClient(access_token) as gmail:
            ids, token = await gmail.list_message_ids("newer_than:60m", 50)
    """

    def __init__(
        self,
        access_token: str,
        timeout: float = 30.0,
        base_url: str = GMAIL_API_BASE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def __aenter__(self) -> GmailClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Gmail request timed out: {path}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Gmail request failed: {e}") from e

        if response.status_code >= 400:
            raise UpstreamError(
                f"Gmail API error {response.status_code} for {path}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json()

    async def list_message_ids(
        self,
        query: str,
        page_size: int,
        page_token: str | None = None,
    ) -> tuple[list[str], str | None]:
        params: dict[str, Any] = {"q": query, "maxResults": page_size}
        if page_token:
            params["pageToken"] = page_token
        data = await self._get("messages", params)
        ids = [m["id"] for m in data.get("messages") or [] if m.get("id")]
        return ids, data.get("nextPageToken")

    async def get_message(self, message_id: str) -> dict[str, Any]:
        return await self._get(f"messages/{message_id}", {"format": "full"})

    async def get_profile_email(self) -> str:
        """Email address of the authenticated mailbox."""
        data = await self._get("profile", {})
        email = data.get("emailAddress")
        if not email:
            raise UpstreamError("Unable to read Gmail profile email")
        return email
