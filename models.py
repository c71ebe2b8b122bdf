"""
Data types shared by the ingestion pipeline and its boundaries.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, List, Any


class IdScheme(str, Enum):
    PLATFORM_NATIVE = "native"
    HASHED_WEB_URL = "hashed"


@dataclass(frozen=True)
class ContentItem:
    """Logical video being watched; the join key across votes, transcripts and session state."""
    id: str
    id_scheme: IdScheme

    @property
    def native_id(self) -> Optional[str]:
        if self.id_scheme is IdScheme.PLATFORM_NATIVE:
            return self.id.split(":", 1)[1]
        return None


@dataclass(frozen=True)
class CaptionTrackDescriptor:
    source_url: str
    language_code: str
    is_auto_generated: bool


@dataclass(frozen=True)
class TranscriptSegment:
    start_seconds: int
    duration_seconds: int
    text: str

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape used by the backend upload and transcript endpoints."""
        return {"start": self.start_seconds, "dur": self.duration_seconds, "text": self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['TranscriptSegment']:
        """Build a segment from the backend wire shape; returns None for unusable items."""
        if not isinstance(data, dict):
            return None
        try:
            start = max(0, int(float(data.get("start") or 0)))
            duration = max(0, int(float(data.get("dur") or 0)))
        except (TypeError, ValueError):
            return None
        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            return None
        return cls(start, duration, text)


@dataclass
class PageContext:
    """
    Snapshot of the page a viewer is on.

    ``globals`` holds well-known page-level data objects by name
    (e.g. ``ytInitialPlayerResponse``, ``ytplayer``); ``scripts`` holds the
    text of inline ``<script>`` elements in document order.
    """
    url: str
    host: str = ""
    media_url: str = ""
    globals: Dict[str, Any] = field(default_factory=dict)
    scripts: List[str] = field(default_factory=list)


@dataclass
class PageDetails:
    """Descriptive fields sent along with metadata registration."""
    page_url: str
    page_host: str
    title: Optional[str] = None
    channel_name: Optional[str] = None


@dataclass
class FetchResult:
    """Outcome of one transcript fetch/parse attempt (single format or the whole engine)."""
    segments: List[TranscriptSegment] = field(default_factory=list)
    status: Optional[int] = None
    error: Optional[str] = None
    fmt: Optional[str] = None
    rate_limited: bool = False

    @property
    def ok(self) -> bool:
        return bool(self.segments)


@dataclass
class ApiResponse:
    """Result of a backend call; failures are values, never exceptions."""
    ok: bool
    status: Optional[int] = None
    data: Any = None
    error: Optional[str] = None


class IngestionOutcome(str, Enum):
    SKIPPED_ALREADY_DONE = "already_done_session"
    SKIPPED_BACKOFF = "backoff"
    SKIPPED_IN_FLIGHT = "in_flight"
    UPLOADED = "uploaded"
    ALREADY_FETCHED_BACKEND = "already_fetched_backend"
    NOT_AUTHENTICATED = "not_authenticated"
    REGISTRATION_FAILED = "registration_failed"
    NO_CAPTION_TRACK = "no_caption_track"
    RATE_LIMITED = "rate_limited"
    FETCH_FAILED = "fetch_failed"
    EMPTY_TRANSCRIPT = "empty_transcript"
    UPLOAD_FAILED = "upload_failed"
    ERROR = "error"


SKIPPED_OUTCOMES = frozenset({
    IngestionOutcome.SKIPPED_ALREADY_DONE,
    IngestionOutcome.SKIPPED_BACKOFF,
    IngestionOutcome.SKIPPED_IN_FLIGHT,
})

SUCCESS_OUTCOMES = frozenset({
    IngestionOutcome.UPLOADED,
    IngestionOutcome.ALREADY_FETCHED_BACKEND,
}) | SKIPPED_OUTCOMES


@dataclass
class IngestionResult:
    content_id: str
    outcome: IngestionOutcome
    status: Optional[int] = None
    error: Optional[str] = None
    segment_count: int = 0
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES

    @property
    def skipped(self) -> bool:
        return self.outcome in SKIPPED_OUTCOMES

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["outcome"] = self.outcome.value
        result["ok"] = self.ok
        result["skipped"] = self.skipped
        return result
