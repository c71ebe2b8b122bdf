"""
Timedtext fetch/parse engine for YouTube caption tracks.

Given a caption track ``baseUrl`` this module:
- requests the track as json3 ("structured events") first and WebVTT second,
  each exactly once, with no retries of its own;
- parses either wire format into whole-second TranscriptSegments with
  entity-decoded, whitespace-normalized text;
- reports failures as FetchResult values, preferring a rate-limit status
  over any other failure so callers can back off.

Requests go through an ``httpx.AsyncClient`` carrying the viewer's own
cookies, since caption URLs are signed for the viewer's session.
"""

import html
import json
import re
from http.cookies import CookieError, SimpleCookie
from typing import Optional, Dict, List, Any, Iterable, Union
from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl

import httpx

from logging_setup import get_logger
from log_events import evt, mask_url
from models import FetchResult, TranscriptSegment

# --- Configuration ---
TIMEDTEXT_TIMEOUT = 15
TIMEDTEXT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)
DEFAULT_RATE_LIMIT_STATUSES = frozenset({429})

FMT_JSON3 = "json3"
FMT_VTT = "vtt"
CUE_SEPARATOR = "-->"
NO_SEGMENTS = "no_segments"
EMPTY_BODY = "content_length=0"

logger = get_logger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_CUE_TAG_RE = re.compile(r"<[^>]*>")
_TIMESTAMP_RE = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{1,2})(?:[.,]\d+)?$")


# --- Text normalization ---

def decode_entities(text: str) -> str:
    """Decode HTML entities until stable, so double-encoded text like ``&amp;#39;`` comes out as ``'``."""
    current = text
    while True:
        decoded = html.unescape(current)
        if decoded == current:
            return decoded
        current = decoded


def normalize_text(text: Optional[str]) -> str:
    """Entity-decode, then collapse whitespace runs to single spaces and trim."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", decode_entities(text)).strip()


# --- Parsing ---

def _ms_to_seconds(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return max(0, int(value) // 1000)
    except (TypeError, ValueError):
        return None


def parse_json3(payload: Union[str, Dict[str, Any]]) -> List[TranscriptSegment]:
    """
    Parse a json3 timedtext document.

    Each event needs ``tStartMs``; ``dDurationMs`` defaults to 0; the text is
    the concatenation of ``segs[].utf8``. Events without a start or with empty
    normalized text are dropped.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            return []
    if not isinstance(payload, dict):
        return []
    events = payload.get("events")
    if not isinstance(events, list):
        return []

    segments = []
    for event in events:
        if not isinstance(event, dict) or "tStartMs" not in event:
            continue
        start = _ms_to_seconds(event.get("tStartMs"))
        if start is None:
            continue
        duration = _ms_to_seconds(event.get("dDurationMs", 0))
        segs = event.get("segs") or []
        if not isinstance(segs, list):
            continue
        raw_text = "".join(
            seg.get("utf8", "") for seg in segs
            if isinstance(seg, dict) and isinstance(seg.get("utf8", ""), str)
        )
        text = normalize_text(raw_text)
        if not text:
            continue
        segments.append(TranscriptSegment(start, duration or 0, text))
    return segments


def parse_cue_timestamp(value: str) -> Optional[int]:
    """``[hh:]mm:ss[.mmm]`` to whole seconds; the sub-second part is discarded."""
    m = _TIMESTAMP_RE.match(value.strip())
    if not m:
        return None
    hours = int(m.group(1) or 0)
    return hours * 3600 + int(m.group(2)) * 60 + int(m.group(3))


def _parse_timing_line(line: str) -> Optional[tuple]:
    left, _, right = line.partition(CUE_SEPARATOR)
    left_parts = left.split()
    right_parts = right.split()
    if not left_parts or not right_parts:
        return None
    # Cue settings (align:start position:0%) may follow the end timestamp
    start = parse_cue_timestamp(left_parts[-1])
    end = parse_cue_timestamp(right_parts[0])
    if start is None or end is None:
        return None
    return start, end


def parse_vtt(content: str) -> List[TranscriptSegment]:
    """
    Parse WebVTT cue text.

    A cue starts at a timing line containing ``-->``; the body is the run of
    non-blank lines after it. Inline cue tags are stripped before the body is
    normalized; cues with an empty body or unparsable timing are skipped.
    """
    if not content:
        return []
    lines = content.replace("\r\n", "\n").replace("\r", "\n").split("\n")

    segments = []
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if CUE_SEPARATOR not in line:
            continue

        timing = _parse_timing_line(line)
        body = []
        while i < len(lines) and lines[i].strip():
            body.append(lines[i])
            i += 1

        if timing is None:
            continue
        start, end = timing
        text = normalize_text(_CUE_TAG_RE.sub("", " ".join(body)))
        if not text:
            continue
        segments.append(TranscriptSegment(start, max(0, end - start), text))
    return segments


# --- HTTP ---

def with_format(source_url: str, fmt: str) -> str:
    """Return ``source_url`` with its ``fmt`` query parameter set to ``fmt``."""
    parsed = urlparse(source_url)
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != "fmt"]
    query.append(("fmt", fmt))
    return urlunparse(parsed._replace(query=urlencode(query)))


def cookies_from_header(cookie_header: str) -> Dict[str, str]:
    """Name/value pairs from a browser ``Cookie`` header; a malformed header yields no cookies."""
    jar = SimpleCookie()
    try:
        jar.load(cookie_header or "")
    except CookieError as e:
        logger.warning(f"Ignoring malformed cookie header: {e}")
        return {}
    return {name: morsel.value for name, morsel in jar.items()}


def create_caption_client(cookies: Optional[Union[str, Dict[str, str]]] = None,
                          timeout: float = TIMEDTEXT_TIMEOUT,
                          transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """
    Create an HTTP client scoped to the viewer's session.

    Args:
        cookies: Cookie header string or name/value mapping from the viewer's browser
        timeout: Per-request timeout in seconds
        transport: Optional transport override (used by tests)
    """
    if isinstance(cookies, str):
        cookies = cookies_from_header(cookies)
    return httpx.AsyncClient(
        headers={
            "User-Agent": TIMEDTEXT_USER_AGENT,
            "Accept": "*/*",
            "Accept-Language": "en-US,en;q=0.9",
        },
        cookies=cookies or None,
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
        transport=transport,
    )


def _validate_response(resp: httpx.Response) -> tuple:
    """
    Guard before parsing. Returns (is_valid, reason).
    """
    ct = (resp.headers.get("content-type") or "").lower()
    body = resp.text or ""

    if not resp.is_success:
        return False, f"status={resp.status_code}"

    if not body.strip():
        return False, EMPTY_BODY

    if "html" in ct:
        if "before you continue to youtube" in body.lower():
            return False, "html_consent_page"
        return False, "html_response"

    return True, "valid"


class TimedtextService:
    """
    Fetch and parse one caption track, json3 first and WebVTT as fallback.

    The service never raises for expected failures (HTTP errors, transport
    errors, unparsable bodies); it returns a FetchResult instead.
    """

    PARSERS = {
        FMT_JSON3: parse_json3,
        FMT_VTT: parse_vtt,
    }

    def __init__(self, client: httpx.AsyncClient,
                 rate_limit_statuses: Iterable[int] = DEFAULT_RATE_LIMIT_STATUSES):
        self.client = client
        self.rate_limit_statuses = frozenset(rate_limit_statuses)

    async def fetch_format(self, source_url: str, fmt: str) -> FetchResult:
        """Request ``source_url`` in one format and parse it. Exactly one request."""
        url = with_format(source_url, fmt)
        try:
            resp = await self.client.get(url)
        except httpx.HTTPError as e:
            evt("timedtext_fetch_failed", fmt=fmt, url=mask_url(url),
                error_type=type(e).__name__, error=str(e)[:100])
            return FetchResult(error=f"{type(e).__name__}: {e}", fmt=fmt)

        is_valid, reason = _validate_response(resp)
        if reason == EMPTY_BODY:
            # A successful answer with nothing in it is an empty track, not a failed fetch
            evt("timedtext_parse_empty", fmt=fmt, status=resp.status_code, bytes=0)
            return FetchResult(status=resp.status_code, error=NO_SEGMENTS, fmt=fmt)
        if not is_valid:
            rate_limited = resp.status_code in self.rate_limit_statuses
            evt("timedtext_fetch_invalid", fmt=fmt, url=mask_url(url), status=resp.status_code,
                reason=reason, rate_limited=rate_limited)
            return FetchResult(status=resp.status_code, error=reason, fmt=fmt, rate_limited=rate_limited)

        segments = self.PARSERS[fmt](resp.text)
        if not segments:
            evt("timedtext_parse_empty", fmt=fmt, status=resp.status_code, bytes=len(resp.content))
            return FetchResult(status=resp.status_code, error=NO_SEGMENTS, fmt=fmt)

        evt("timedtext_success", fmt=fmt, segments=len(segments))
        return FetchResult(segments=segments, status=resp.status_code, fmt=fmt)

    async def fetch_transcript(self, source_url: str) -> FetchResult:
        """
        Try json3, then WebVTT. On total failure, surface a rate-limited
        attempt if there is one, otherwise the json3 failure.
        """
        first = await self.fetch_format(source_url, FMT_JSON3)
        if first.ok:
            return first

        second = await self.fetch_format(source_url, FMT_VTT)
        if second.ok:
            return second

        if first.rate_limited:
            chosen = first
        elif second.rate_limited:
            chosen = second
        else:
            chosen = first

        evt("timedtext_exhausted", status=chosen.status, reason=chosen.error,
            fmt=chosen.fmt, rate_limited=chosen.rate_limited)
        logger.info(f"Timedtext exhausted for {mask_url(source_url)}: {chosen.error}")
        return chosen
