"""
URL Canonicalization Module
===========================

Turns the many raw forms a listing URL takes inside alert emails
(tracking parameters, redirect wrappers, http/https, trailing slashes)
into one stable string, and hashes it into the listing identity key.
"""

from __future__ import annotations

import hashlib
from urllib.parse import SplitResult, parse_qs, parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PREFIXES = ("utm_", "mc_", "gclid", "fbclid")
TRACKING_EXACT = frozenset({"mc_cid", "mc_eid"})

# Each unwrap consumes one redirect layer; deeper nesting is rejected.
MAX_UNWRAP_DEPTH = 5

DEFAULT_PORTS = {"http": 80, "https": 443}


def _google_target(parts: SplitResult) -> list[str] | None:
    if "google." in (parts.hostname or "") and parts.path.rstrip("/") == "/url":
        return ["q", "url"]
    return None


def _zillow_target(parts: SplitResult) -> list[str] | None:
    if "mail.zillow.com" in (parts.hostname or ""):
        return ["u", "target"]
    return None


def _facebook_target(parts: SplitResult) -> list[str] | None:
    if parts.hostname in ("l.facebook.com", "lm.facebook.com") and parts.path.rstrip("/") == "/l.php":
        return ["u"]
    return None


# Redirect wrappers: each returns the query keys that may hold the target URL.
REDIRECT_WRAPPERS = (_google_target, _zillow_target, _facebook_target)


def _split(candidate: str) -> SplitResult | None:
    """Parse a URL, rejecting anything that is not an absolute http(s) URL."""
    try:
        parts = urlsplit(candidate)
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return None
    if parts.scheme.lower() not in DEFAULT_PORTS or not parts.hostname:
        return None
    return parts


def _unwrap_target(parts: SplitResult) -> str | None:
    """Return the embedded destination if parts is a known redirect wrapper."""
    params = parse_qs(parts.query)
    for wrapper in REDIRECT_WRAPPERS:
        keys = wrapper(parts)
        if keys is None:
            continue
        for key in keys:
            values = params.get(key)
            if values and values[0].strip():
                return values[0].strip()
    return None


def _is_tracking_param(key: str) -> bool:
    return key in TRACKING_EXACT or key.startswith(TRACKING_PREFIXES)


def _normalize(parts: SplitResult) -> str:
    scheme = parts.scheme.lower()
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    if port is not None and port not in (DEFAULT_PORTS[scheme], DEFAULT_PORTS["https"]):
        host = f"{host}:{port}"
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        host = f"{userinfo}@{host}"

    kept = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]

    path = parts.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    return urlunsplit(("https", host, path, urlencode(kept), ""))


def canonicalize_url(raw: str | None) -> str | None:
    """
    Canonicalize a raw URL for deduplication.

    - Unwrap Google, Zillow and Facebook redirect links (bounded depth)
    - Remove the fragment
    - Upgrade http to https
    - Strip tracking query parameters (utm_*, mc_*, gclid, fbclid)
    - Strip trailing slashes from the path (root "/" is kept)
    - Lowercase the host

    Args:
        raw: URL as found in the email

    Returns:
        Canonical URL, or None if raw is not a usable http(s) URL
    """
    if not raw:
        return None

    candidate = raw.strip()
    for _ in range(MAX_UNWRAP_DEPTH + 1):
        parts = _split(candidate)
        if parts is None:
            return None
        target = _unwrap_target(parts)
        if target is None:
            return _normalize(parts)
        candidate = target

    return None


def hash_url(canonical_url: str) -> str:
    """
    Compute the identity key of a canonical URL.

    Args:
        canonical_url: Output of canonicalize_url

    Returns:
        Hex-encoded SHA-256 hash
    """
    return hashlib.sha256(canonical_url.encode("utf-8")).hexdigest()
