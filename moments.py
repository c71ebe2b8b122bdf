"""
Voted moments and the transcript text around them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

from content_identity import NATIVE_PREFIX
from models import TranscriptSegment
from timedtext_service import normalize_text

WINDOW_MIN = 2
WINDOW_MAX = 30


def format_time(seconds: float) -> str:
    """Whole seconds as ``MM:SS`` (minutes are not wrapped at 60)."""
    total = max(0, int(seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


def clamp_window(window_sec: Any, default: int = 5) -> int:
    try:
        value = int(float(window_sec))
    except (TypeError, ValueError):
        value = default
    return max(WINDOW_MIN, min(WINDOW_MAX, value))


@dataclass
class Snippet:
    range_label: str
    segments: List[TranscriptSegment] = field(default_factory=list)

    def as_text(self) -> str:
        lines = [f"{format_time(s.start_seconds)} {normalize_text(s.text)}" for s in self.segments]
        return "\n".join([self.range_label] + lines).strip()


def build_snippet_around(segments: Sequence[TranscriptSegment], center_sec: float, window_sec: int) -> Snippet:
    """Segments overlapping ``[center - window, center + window]``, ordered by start."""
    start = max(0, center_sec - window_sec)
    end = center_sec + window_sec
    overlapping = [
        s for s in segments
        if s.start_seconds <= end and s.start_seconds + s.duration_seconds >= start
    ]
    overlapping.sort(key=lambda s: s.start_seconds)
    return Snippet(f"{format_time(start)} - {format_time(end)}", overlapping)


def link_at(content_id: Optional[str], seconds: float, page_url: Optional[str] = None) -> str:
    """Deep link to a moment: YouTube ``&t=`` links for native ids, the page URL otherwise."""
    prefix = f"{NATIVE_PREFIX}:"
    if not content_id or not content_id.startswith(prefix):
        return page_url or "#"
    video_id = content_id[len(prefix):]
    return f"https://www.youtube.com/watch?v={quote(video_id, safe='')}&t={max(0, int(seconds))}s"


@dataclass
class Moment:
    time_bucket: int
    up: int = 0
    down: int = 0
    link: str = "#"
    snippet: Optional[Snippet] = None


def moments_from_summary(summary: Any, content_id: Optional[str], page_url: Optional[str] = None,
                         segments: Optional[Sequence[TranscriptSegment]] = None,
                         window_sec: int = 5) -> List[Moment]:
    """
    Build Moments from a summary payload's ``topUp`` buckets.

    Snippets are attached only when transcript segments are given.
    """
    buckets = summary.get("topUp") if isinstance(summary, dict) else None
    if not isinstance(buckets, list):
        return []

    window = clamp_window(window_sec)
    moments = []
    for bucket in buckets:
        if not isinstance(bucket, dict):
            continue
        try:
            t = int(float(bucket.get("timeBucket") or 0))
            up = int(bucket.get("up") or 0)
            down = int(bucket.get("down") or 0)
        except (TypeError, ValueError):
            continue
        snippet = build_snippet_around(segments, t, window) if segments is not None else None
        moments.append(Moment(t, up, down, link_at(content_id, t, page_url), snippet))
    return moments


def segments_from_payload(payload: Any) -> List[TranscriptSegment]:
    """Segments from a stored-transcript response (``{"segments": [...]}``); bad items are dropped."""
    raw = payload.get("segments") if isinstance(payload, dict) else None
    if not isinstance(raw, list):
        return []
    segments = []
    for item in raw:
        segment = TranscriptSegment.from_dict(item)
        if segment is not None:
            segments.append(segment)
    return segments


def moment_to_dict(moment: Moment) -> Dict[str, Any]:
    result = {
        "time": format_time(moment.time_bucket),
        "timeBucket": moment.time_bucket,
        "up": moment.up,
        "down": moment.down,
        "link": moment.link,
    }
    if moment.snippet is not None:
        result["range"] = moment.snippet.range_label
        result["snippet"] = [s.to_dict() for s in moment.snippet.segments]
    return result
