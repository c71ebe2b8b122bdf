"""
Stable content identity for the video a viewer is watching.

YouTube pages get ``native:<videoId>``; everything else gets
``hashed:<host>:<sha256 prefix>`` over host, page URL and media URL.
Pure functions: no I/O, never raise.
"""

import hashlib
import re
from typing import Optional
from urllib.parse import urlparse, parse_qs

from models import ContentItem, IdScheme

NATIVE_PREFIX = "native"
HASHED_PREFIX = "hashed"
DEFAULT_PREFIX_LEN = 16

YOUTUBE_HOSTS = ("youtube.com", "youtu.be")
VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
_PATH_ID_RE = re.compile(r"^/(?:shorts|embed|live|v)/([^/?#]+)")


def is_youtube_host(host: str) -> bool:
    host = (host or "").lower().split(":")[0]
    return any(host == h or host.endswith("." + h) for h in YOUTUBE_HOSTS)


def extract_video_id(url: str) -> Optional[str]:
    """Return the 11-character YouTube id carried by ``url``, or None."""
    try:
        parsed = urlparse((url or "").strip())
        host = (parsed.hostname or "").lower()
        if not is_youtube_host(host):
            return None

        candidate = None
        if host == "youtu.be" or host.endswith(".youtu.be"):
            candidate = parsed.path.lstrip("/").split("/")[0]
        else:
            candidate = (parse_qs(parsed.query).get("v") or [None])[0]
            if not candidate:
                m = _PATH_ID_RE.match(parsed.path)
                candidate = m.group(1) if m else None

        if candidate and VIDEO_ID_RE.match(candidate):
            return candidate
        return None
    except (ValueError, TypeError, AttributeError):
        return None


def canonical_page_url(url: str) -> str:
    """Page URL with the fragment stripped."""
    return (url or "").split("#", 1)[0]


def _host_of(url: str) -> str:
    try:
        return urlparse(url or "").netloc
    except (ValueError, TypeError):
        return ""


def hashed_content_id(host: str, page_url: str, media_url: str, prefix_len: int = DEFAULT_PREFIX_LEN) -> str:
    base = f"{host or ''}|{canonical_page_url(page_url)}|{media_url or ''}"
    digest = hashlib.sha256(base.encode("utf-8", errors="replace")).hexdigest()
    return f"{HASHED_PREFIX}:{host or ''}:{digest[:prefix_len]}"


def resolve_content_item(page_url: str, media_url: str = "", host: Optional[str] = None,
                         prefix_len: int = DEFAULT_PREFIX_LEN) -> ContentItem:
    """
    Derive the ContentItem for a page view.

    Args:
        page_url: Current page URL (fragment is ignored)
        media_url: Resolved media resource URL of the video element, if any
        host: Page host; derived from ``page_url`` when omitted or empty
        prefix_len: Hex digits kept from the digest for hashed ids
    """
    video_id = extract_video_id(page_url)
    if video_id:
        return ContentItem(f"{NATIVE_PREFIX}:{video_id}", IdScheme.PLATFORM_NATIVE)

    if not host:
        host = _host_of(page_url)
    return ContentItem(hashed_content_id(host, page_url, media_url, prefix_len), IdScheme.HASHED_WEB_URL)


def resolve_content_id(page_url: str, media_url: str = "", host: Optional[str] = None,
                       prefix_len: int = DEFAULT_PREFIX_LEN) -> str:
    return resolve_content_item(page_url, media_url, host, prefix_len).id
