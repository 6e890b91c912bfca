"""
Mailbox Module
==============

Source-independent view of the mail provider: message id pagination and
decoding of full messages (Gmail ``format=full`` payloads) into sender,
subject, receipt time and the plain-text / HTML bodies.
"""

from __future__ import annotations

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class MailMessage:
    """A decoded alert email."""

    message_id: str
    sender: str | None
    subject: str | None
    received_at: datetime
    text_plain: str = ""
    text_html: str = ""

    def snippet(self, length: int = 200) -> str | None:
        """Leading plain text, used as the sighting excerpt."""
        text = self.text_plain.strip()
        return text[:length] or None


class MessageSource(ABC):
    """
    Abstract mail provider.

    Implementations list message ids matching a provider query and fetch
    full messages in the Gmail API JSON shape.
    """

    @abstractmethod
    async def list_message_ids(
        self,
        query: str,
        page_size: int,
        page_token: str | None = None,
    ) -> tuple[list[str], str | None]:
        """
        List one page of message ids.

        Args:
            query: Provider search query
            page_size: Maximum ids per page
            page_token: Token returned by the previous page

        Returns:
            Tuple of (ids, next page token or None)
        """
        pass

    @abstractmethod
    async def get_message(self, message_id: str) -> dict[str, Any]:
        """
        Fetch a full message.

        Args:
            message_id: Provider message id

        Returns:
            Message resource with ``payload`` and ``internalDate``
        """
        pass

    async def aclose(self) -> None:
        """Release provider resources."""


async def iter_message_ids(
    source: MessageSource,
    query: str,
    page_size: int,
    max_pages: int = 1,
) -> list[str]:
    """
    Collect message ids across pages.

    Stops when the provider returns no next-page token or after max_pages
    pages. Ids repeated across pages are kept once, in first-seen order.

    Args:
        source: Mail provider
        query: Provider search query
        page_size: Ids requested per page
        max_pages: Page ceiling (1 means first page only)

    Returns:
        Distinct message ids
    """
    ids: dict[str, None] = {}
    page_token: str | None = None

    for page in range(max(1, max_pages)):
        page_ids, page_token = await source.list_message_ids(query, page_size, page_token)
        for message_id in page_ids:
            if message_id:
                ids.setdefault(message_id, None)
        logger.debug(f"Page {page + 1}: {len(page_ids)} ids, next token={bool(page_token)}")
        if not page_token:
            break

    return list(ids)


def decode_body(data: str | None) -> str:
    """Decode a base64url body part into text."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        logger.debug("Skipping undecodable body part")
        return ""
    return raw.decode("utf-8", errors="replace")


def collect_bodies(
    part: dict[str, Any] | None,
    plain: list[str] | None = None,
    html: list[str] | None = None,
) -> tuple[list[str], list[str]]:
    """
    Walk a MIME part tree depth-first, collecting text/plain and text/html bodies.

    Returns:
        Tuple of (plain parts, html parts) in document order
    """
    plain = [] if plain is None else plain
    html = [] if html is None else html
    if not part:
        return plain, html

    mime_type = (part.get("mimeType") or "").lower()
    data = (part.get("body") or {}).get("data")
    if data:
        if mime_type == "text/plain":
            plain.append(decode_body(data))
        elif mime_type == "text/html":
            html.append(decode_body(data))

    for child in part.get("parts") or []:
        collect_bodies(child, plain, html)

    return plain, html


def _header(headers: list[dict[str, Any]], name: str) -> str | None:
    for header in headers:
        if (header.get("name") or "").lower() == name:
            return header.get("value")
    return None


def decode_message(raw: dict[str, Any]) -> MailMessage:
    """
    Decode a full message resource.

    Args:
        raw: Message resource (id, internalDate, payload)

    Returns:
        MailMessage; received_at falls back to now when internalDate is missing
    """
    payload = raw.get("payload") or {}
    headers = payload.get("headers") or []

    internal_date = raw.get("internalDate")
    if internal_date:
        received_at = datetime.fromtimestamp(int(internal_date) / 1000, tz=UTC)
    else:
        received_at = datetime.now(UTC)

    plain, html = collect_bodies(payload)

    return MailMessage(
        message_id=str(raw.get("id", "")),
        sender=_header(headers, "from"),
        subject=_header(headers, "subject"),
        received_at=received_at,
        text_plain="\n".join(plain),
        text_html="\n".join(html),
    )
