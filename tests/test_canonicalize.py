"""Tests for URL canonicalization and hashing."""

import hashlib
from urllib.parse import urlencode

import pytest

from listing_radar.ingestion.canonicalize import (
    MAX_UNWRAP_DEPTH,
    canonicalize_url,
    hash_url,
)


def google_wrap(url: str) -> str:
    return "https://www.google.com/url?" + urlencode({"q": url, "sa": "D"})


class TestCanonicalizeUrl:
    """Tests for canonicalize_url."""

    def test_equivalent_forms_collapse(self) -> None:
        """Scheme, host case, tracking params and trailing slash do not matter."""
        forms = [
            "http://Example.com/a/?utm_source=x",
            "https://example.com/a",
            "https://example.com/a/",
        ]
        results = {canonicalize_url(f) for f in forms}
        assert results == {"https://example.com/a"}
        assert len({hash_url(r) for r in results}) == 1

    @pytest.mark.parametrize(
        "raw",
        [
            "http://Example.com/a/?utm_source=x",
            "https://example.com/p?id=5&utm_medium=mail&fbclid=abc",
            "https://www.facebook.com/marketplace/item/123/?ref=email#top",
            "HTTPS://EXAMPLE.COM",
            "https://example.com/a//",
            "https://example.com/search?q=2+bed&page=2",
            google_wrap("https://example.com/x/?gclid=1"),
            "https://www.google.com/url/?q=https://example.com/apa/1",
            "https://l.facebook.com/l.php/?u=https%3A%2F%2Fwww.facebook.com%2Fmarketplace%2Fitem%2F9%2F",
        ],
    )
    def test_idempotent(self, raw: str) -> None:
        """Canonicalizing a canonical URL returns it unchanged."""
        once = canonicalize_url(raw)
        assert once is not None
        assert canonicalize_url(once) == once

    def test_strips_tracking_params_only(self) -> None:
        """Known tracking params are removed, others kept in order."""
        raw = "https://example.com/p?id=5&utm_medium=x&fbclid=abc&gclid=1&mc_cid=2&mc_eid=3&page=2"
        assert canonicalize_url(raw) == "https://example.com/p?id=5&page=2"

    def test_removes_fragment(self) -> None:
        """Fragments never reach the canonical form."""
        assert canonicalize_url("https://example.com/a#photos") == "https://example.com/a"

    def test_root_path_kept(self) -> None:
        """A bare host canonicalizes to the root path."""
        assert canonicalize_url("HTTPS://EXAMPLE.COM") == "https://example.com/"
        assert canonicalize_url("https://example.com/") == "https://example.com/"

    def test_default_ports_dropped(self) -> None:
        """Default ports disappear, custom ports stay."""
        assert canonicalize_url("http://example.com:80/a") == "https://example.com/a"
        assert canonicalize_url("https://example.com:443/a") == "https://example.com/a"
        assert canonicalize_url("https://example.com:8443/a") == "https://example.com:8443/a"

    def test_unwraps_google_redirect(self) -> None:
        """Google /url links resolve to their q target."""
        raw = google_wrap("https://example.com/a/?utm_source=x")
        assert canonicalize_url(raw) == "https://example.com/a"

    def test_unwraps_facebook_redirect(self) -> None:
        """Facebook l.php links resolve to their u target."""
        target = "https://www.facebook.com/marketplace/item/123/"
        raw = "https://l.facebook.com/l.php?" + urlencode({"u": target, "h": "AT0"})
        assert canonicalize_url(raw) == "https://www.facebook.com/marketplace/item/123"

    def test_unwraps_wrapper_paths_with_trailing_slash(self) -> None:
        """A trailing slash on the wrapper path does not hide the target."""
        assert canonicalize_url("https://www.google.com/url/?q=https://example.com/apa/1") == "https://example.com/apa/1"
        raw = "https://l.facebook.com/l.php/?" + urlencode({"u": "https://www.facebook.com/marketplace/item/9/"})
        assert canonicalize_url(raw) == "https://www.facebook.com/marketplace/item/9"

    def test_unwraps_zillow_redirect(self) -> None:
        """Zillow mail links resolve to their target parameter."""
        raw = "https://mail.zillow.com/c?" + urlencode(
            {"target": "https://www.zillow.com/homedetails/1_zpid/?utm_campaign=x"}
        )
        assert canonicalize_url(raw) == "https://www.zillow.com/homedetails/1_zpid"

    def test_unwrap_depth_is_bounded(self) -> None:
        """Nesting up to the maximum depth unwraps; one more layer is rejected."""
        url = "https://example.com/a"
        for _ in range(MAX_UNWRAP_DEPTH):
            url = google_wrap(url)
        assert canonicalize_url(url) == "https://example.com/a"

        assert canonicalize_url(google_wrap(url)) is None

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "   ",
            "not a url",
            "mailto:someone@example.com",
            "ftp://example.com/file",
            "http://",
            "http://example.com:abc/",
        ],
    )
    def test_malformed_returns_none(self, raw: str | None) -> None:
        """Unusable input yields None instead of raising."""
        assert canonicalize_url(raw) is None


class TestHashUrl:
    """Tests for hash_url."""

    def test_sha256_hex(self) -> None:
        """Hash is the hex SHA-256 of the canonical string."""
        url = "https://example.com/a"
        expected = hashlib.sha256(url.encode("utf-8")).hexdigest()
        assert hash_url(url) == expected
        assert len(hash_url(url)) == 64

    def test_stable_and_distinct(self) -> None:
        """Same input, same hash; different input, different hash."""
        assert hash_url("https://example.com/a") == hash_url("https://example.com/a")
        assert hash_url("https://example.com/a") != hash_url("https://example.com/b")
