"""
HTML Block Heuristics
=====================

Pattern matching tuned to the alert emails sent by listing sites. This is
not an HTML parser: bodies are cut into paragraph blocks and each block is
scanned with regular expressions for an anchor, a price, an image and a few
structured text signals (beds, baths, street address).
"""

from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass
from urllib.parse import unquote

# Blocks end at a closing paragraph tag.
BLOCK_SPLIT_RE = re.compile(r"</p\s*>", re.IGNORECASE)

ANCHOR_RE = re.compile(
    r"<a\b[^>]*?\bhref\s*=\s*([\"'])(?P<href>.*?)\1[^>]*>(?P<label>.*?)</a\s*>",
    re.IGNORECASE | re.DOTALL,
)

# Navigation links of digest emails ("12 new results"), never a listing.
DIGEST_LABEL_RE = re.compile(r"new\s+results?", re.IGNORECASE)

PRICE_RE = re.compile(r"\$\s?(\d[\d,]*)")
BEDS_RE = re.compile(r"\b(\d+(?:\.\d+)?)\s*(?:bd|bds|beds?|bedrooms?|br)\b", re.IGNORECASE)
BATHS_RE = re.compile(r"\b(\d+(?:\.\d+)?)\s*(?:ba|baths?|bathrooms?)\b", re.IGNORECASE)
ADDRESS_RE = re.compile(r"\b\d+ +[\w .#'-]*, *[A-Za-z][A-Za-z .'-]*, *[A-Z]{2} +\d{5}\b")

IMG_SRC_RE = re.compile(r"<img\b[^>]*?\bsrc\s*=\s*([\"'])(?P<url>.*?)\1", re.IGNORECASE | re.DOTALL)
BACKGROUND_ATTR_RE = re.compile(
    r"<t[dr]\b[^>]*?\bbackground\s*=\s*([\"'])(?P<url>.*?)\1", re.IGNORECASE | re.DOTALL
)
BACKGROUND_CSS_RE = re.compile(
    r"background-image\s*:\s*url\(\s*(?:&quot;|[\"'])?(?P<url>[^\"')&]+)", re.IGNORECASE
)

# Image CDNs whose URLs show up wrapped inside mail-proxy URLs.
DIRECT_IMAGE_HOST_RE = re.compile(
    r"https?://(?:[\w-]+\.)*(?:images\.craigslist\.org|fbcdn\.net|zillowstatic\.com"
    r"|cdn-img\w*\.streeteasy\.com|photos\.zillowstatic\.com)/[^\s\"'<>()#]*",
    re.IGNORECASE,
)
ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

TAG_RE = re.compile(r"<[^>]*>")
BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
STYLE_SCRIPT_RE = re.compile(r"<(style|script)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
WHITESPACE_RE = re.compile(r"\s+")
INLINE_SPACE_RE = re.compile(r"[^\S\n]+")

URL_RE = re.compile(r"(https?://[^\s\"'<>]+)", re.IGNORECASE)

SKIPPED_HREF_PREFIXES = ("mailto:", "tel:", "#", "javascript:")

DESCRIPTION_SEPARATOR = " · "


@dataclass
class ListingCandidate:
    """A listing link found in an email, with whatever metadata sat next to it."""

    url: str
    text: str | None = None
    price: float | None = None
    image: str | None = None
    description: str | None = None


def strip_tags(fragment: str) -> str:
    """Remove tags, turn line breaks into spaces and collapse whitespace."""
    if not fragment:
        return ""
    text = STYLE_SCRIPT_RE.sub(" ", fragment)
    text = BR_RE.sub(" ", text)
    text = TAG_RE.sub(" ", text)
    text = html_lib.unescape(text).replace("\xa0", " ")
    return WHITESPACE_RE.sub(" ", text).strip()


def segment_text(fragment: str) -> str:
    """Like strip_tags, but keep one line per text node so patterns stay inside an element."""
    if not fragment:
        return ""
    text = STYLE_SCRIPT_RE.sub("\n", fragment)
    text = TAG_RE.sub("\n", text)
    text = html_lib.unescape(text).replace("\xa0", " ")
    lines = (INLINE_SPACE_RE.sub(" ", line).strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def parse_price(text: str) -> float | None:
    """Parse the first $-amount in text ("$2,450" -> 2450.0)."""
    if not text:
        return None
    match = PRICE_RE.search(text)
    if match is None:
        return None
    digits = match.group(1).replace(",", "")
    if not digits:
        return None
    return float(digits)


def _unwrap_image_url(url: str) -> str:
    url = html_lib.unescape(url).strip()

    # Mail proxies append the original URL after a '#'.
    if "#" in url:
        suffix = url.split("#", 1)[1]
        if ABSOLUTE_URL_RE.match(suffix):
            url = suffix

    embedded = DIRECT_IMAGE_HOST_RE.search(url) or DIRECT_IMAGE_HOST_RE.search(unquote(url))
    if embedded is not None:
        return embedded.group(0)
    return url


def extract_image(fragment: str) -> str | None:
    """
    Find the image shown for a block (or a whole message).

    Priority: <img src>, then <td>/<tr> background attribute, then CSS
    background-image. Proxied URLs are unwrapped to the original image.

    Args:
        fragment: HTML to search

    Returns:
        Image URL, or None
    """
    if not fragment:
        return None
    for pattern in (IMG_SRC_RE, BACKGROUND_ATTR_RE, BACKGROUND_CSS_RE):
        match = pattern.search(fragment)
        if match and match.group("url").strip():
            return _unwrap_image_url(match.group("url"))
    return None


def describe_block(text: str, price: float | None = None) -> str | None:
    """
    Build a short label from the structured signals in a block's text.

    Args:
        text: Block text, one line per element (see segment_text)
        price: Price already found in the block, if any

    Returns:
        Joined fragments, or None if the block has no price, beds or address
    """
    beds = BEDS_RE.search(text)
    baths = BATHS_RE.search(text)
    address = ADDRESS_RE.search(text)

    if price is None and beds is None and address is None:
        return None

    fragments = []
    if price is not None:
        fragments.append(f"${price:,.0f}")
    if beds is not None:
        fragments.append(f"{beds.group(1)} bd")
    if baths is not None:
        fragments.append(f"{baths.group(1)} ba")
    if address is not None:
        fragments.append(address.group(0).strip())
    return DESCRIPTION_SEPARATOR.join(fragments)


def extract_listings(html: str) -> list[ListingCandidate]:
    """
    Extract structured listing candidates from an email's HTML body.

    Blocks without a price, bed count or address are treated as
    boilerplate (headers, footers) and yield nothing.

    Args:
        html: HTML body

    Returns:
        Candidates in document order, one per distinct href
    """
    if not html:
        return []

    candidates: list[ListingCandidate] = []
    by_url: dict[str, ListingCandidate] = {}

    for block in BLOCK_SPLIT_RE.split(html):
        anchors = list(ANCHOR_RE.finditer(block))
        if not anchors:
            continue

        block_text = segment_text(block)
        price = parse_price(block_text)
        description = describe_block(block_text, price)
        if description is None:
            continue
        image = extract_image(block)

        for anchor in anchors:
            href = html_lib.unescape(anchor.group("href")).strip()
            if not href or href.lower().startswith(SKIPPED_HREF_PREFIXES):
                continue
            label = strip_tags(anchor.group("label")) or None
            if label and DIGEST_LABEL_RE.search(label):
                continue

            existing = by_url.get(href)
            if existing is not None:
                if existing.text is None and label:
                    existing.text = label
                continue

            candidate = ListingCandidate(
                url=href,
                text=label,
                price=price,
                image=image,
                description=description,
            )
            by_url[href] = candidate
            candidates.append(candidate)

    return candidates


def extract_urls(text_plain: str, text_html: str) -> list[str]:
    """
    Generic fallback: every http(s) URL in the plain and HTML bodies.

    From the HTML body, anchor hrefs and URLs in the visible text are
    taken; image and stylesheet URLs are not.

    Args:
        text_plain: Plain-text body
        text_html: HTML body

    Returns:
        Distinct URLs in the order first seen
    """
    seen: dict[str, None] = {}

    def scan(body: str) -> None:
        for match in URL_RE.finditer(body):
            seen.setdefault(match.group(1), None)

    if text_plain:
        scan(text_plain)
    if text_html:
        for anchor in ANCHOR_RE.finditer(text_html):
            href = html_lib.unescape(anchor.group("href")).strip()
            if URL_RE.fullmatch(href):
                seen.setdefault(href, None)
        scan(strip_tags(text_html))
    return list(seen)
