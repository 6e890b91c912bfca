"""
Credential Provider Module
==========================

Google OAuth2 for the connected mailbox: consent URL, code exchange and
access-token refresh against the Google token endpoint, with the stored
credential kept in the oauth_tokens table.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from listing_radar.core.exceptions import ConfigurationError, NotConnectedError, UpstreamError
from listing_radar.core.schema import OAuthCredential
from listing_radar.db.repositories import OAuthTokenRepository
from listing_radar.ingestion.gmail import GmailClient

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]


class GoogleOAuthClient:
    """Minimal OAuth2 client for the Gmail read-only scope."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_env(cls) -> GoogleOAuthClient:
        """
        Create from GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET and GOOGLE_REDIRECT_URI.

        Raises:
            ConfigurationError: If any of them is missing
        """
        client_id = os.environ.get("GOOGLE_CLIENT_ID", "")
        client_secret = os.environ.get("GOOGLE_CLIENT_SECRET", "")
        redirect_uri = os.environ.get("GOOGLE_REDIRECT_URI", "")
        if not client_id or not client_secret or not redirect_uri:
            raise ConfigurationError("Missing Google OAuth env vars")
        return cls(client_id, client_secret, redirect_uri)

    def build_auth_url(self) -> str:
        """Consent URL granting offline access to the mailbox."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    async def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        payload = {"client_id": self.client_id, "client_secret": self.client_secret, **data}
        try:
            if self._client is not None:
                response = await self._client.post(TOKEN_URL, data=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(TOKEN_URL, data=payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Token endpoint request failed: {e}") from e

        if response.status_code >= 400:
            raise UpstreamError(
                f"Token endpoint error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json()

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens."""
        return await self._post_token(
            {"code": code, "grant_type": "authorization_code", "redirect_uri": self.redirect_uri}
        )

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        """Get a new access token for a refresh token."""
        return await self._post_token({"refresh_token": refresh_token, "grant_type": "refresh_token"})


def _expiry_from(tokens: dict[str, Any], now: datetime) -> datetime | None:
    expires_in = tokens.get("expires_in")
    if expires_in is None:
        return None
    return now + timedelta(seconds=int(expires_in))


class CredentialProvider:
    """
    Hands out a non-expired credential for the single connected mailbox.

    Refreshed tokens are written back before they are returned.
    """

    def __init__(
        self,
        session: Session,
        oauth_client: GoogleOAuthClient,
        refresh_margin_seconds: int = 60,
    ) -> None:
        self.session = session
        self.oauth_client = oauth_client
        self.refresh_margin_seconds = refresh_margin_seconds
        self.tokens = OAuthTokenRepository(session)

    async def get_valid_credential(self) -> OAuthCredential:
        """
        Get the active credential, refreshing it if needed.

        Raises:
            NotConnectedError: If no mailbox has been connected
            UpstreamError: If the refresh call fails
        """
        credential = self.tokens.get_active()
        if credential is None:
            raise NotConnectedError()

        if credential.expires_within(self.refresh_margin_seconds):
            credential = await self.refresh(credential)
        return credential

    async def refresh(self, credential: OAuthCredential) -> OAuthCredential:
        """Refresh and persist a credential."""
        logger.info(f"Refreshing access token for {credential.email}")
        tokens = await self.oauth_client.refresh(credential.refresh_token)
        refreshed = credential.model_copy(
            update={
                "access_token": tokens.get("access_token"),
                "expiry_date": _expiry_from(tokens, datetime.now(UTC)),
                # Google only returns a refresh token when it rotates it.
                "refresh_token": tokens.get("refresh_token") or credential.refresh_token,
            }
        )
        saved = self.tokens.save(refreshed)
        self.session.commit()
        return saved


async def connect_account(
    session: Session,
    oauth_client: GoogleOAuthClient,
    code: str,
    gmail_factory: Callable[[str], GmailClient] | None = None,
) -> OAuthCredential:
    """
    Finish the consent flow: exchange the code and store the credential.

    The mailbox address is read from the Gmail profile with the new
    access token; gmail_factory builds that client (default: GmailClient).

    Raises:
        UpstreamError: If Google returns no refresh token or a call fails
    """
    tokens = await oauth_client.exchange_code(code)
    refresh_token = tokens.get("refresh_token")
    if not refresh_token:
        raise UpstreamError("No refresh token returned; revoke access and retry with prompt=consent")

    def default_gmail(access_token: str) -> GmailClient:
        return GmailClient(access_token, timeout=oauth_client.timeout)

    make_gmail = gmail_factory or default_gmail
    async with make_gmail(tokens["access_token"]) as gmail:
        email = await gmail.get_profile_email()

    credential = OAuthCredential(
        email=email,
        refresh_token=refresh_token,
        access_token=tokens.get("access_token"),
        expiry_date=_expiry_from(tokens, datetime.now(UTC)),
    )
    saved = OAuthTokenRepository(session).save(credential)
    session.commit()
    logger.info(f"Connected mailbox {email}")
    return saved
