"""
Caption track discovery from YouTube page metadata.

The player response is looked up through a prioritized list of extraction
strategies, each a pure function ``PageContext -> Optional[dict]``:

1. the ``ytInitialPlayerResponse`` global
2. ``ytplayer.config.args`` (``raw_player_response`` or the JSON string ``player_response``)
3. inline scripts, extracting the first balanced JSON object after the
   ``ytInitialPlayerResponse`` marker

Parse failures in any strategy are logged and the next one is tried.
"""

import json
from typing import Optional, Dict, List, Any, Callable, Sequence, Tuple
from urllib.parse import urlparse, parse_qs

from logging_setup import get_logger
from log_events import evt
from models import CaptionTrackDescriptor, PageContext, PageDetails

logger = get_logger(__name__)

PLAYER_RESPONSE_MARKER = "ytInitialPlayerResponse"

RawMetadata = Dict[str, Any]
ExtractionStrategy = Callable[[PageContext], Optional[RawMetadata]]


# --- JSON extraction ---

def extract_json_object_after(text: str, marker: str) -> Optional[RawMetadata]:
    """
    Parse the first balanced ``{...}`` object that follows ``marker`` in ``text``.

    Braces inside JSON string literals are not counted. Returns None when the
    marker is absent, the object never closes, or the slice is not valid JSON.
    """
    idx = text.find(marker)
    if idx < 0:
        return None
    start = text.find("{", idx + len(marker))
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(text[start:i + 1])
                except ValueError:
                    return None
                return parsed if isinstance(parsed, dict) else None
    return None


# --- Extraction strategies ---

def from_initial_player_response(page: PageContext) -> Optional[RawMetadata]:
    value = page.globals.get(PLAYER_RESPONSE_MARKER)
    return value if isinstance(value, dict) else None


def from_player_config(page: PageContext) -> Optional[RawMetadata]:
    ytplayer = page.globals.get("ytplayer")
    if not isinstance(ytplayer, dict):
        return None
    args = (ytplayer.get("config") or {}).get("args") or {}
    if not isinstance(args, dict):
        return None

    raw = args.get("raw_player_response")
    if isinstance(raw, dict):
        return raw

    player_response = args.get("player_response")
    if isinstance(player_response, str):
        parsed = json.loads(player_response)
        return parsed if isinstance(parsed, dict) else None
    return None


def from_inline_scripts(page: PageContext) -> Optional[RawMetadata]:
    for script in page.scripts:
        if not script or PLAYER_RESPONSE_MARKER not in script:
            continue
        obj = extract_json_object_after(script, PLAYER_RESPONSE_MARKER)
        if obj is not None:
            return obj
    return None


DEFAULT_STRATEGIES: Tuple[ExtractionStrategy, ...] = (
    from_initial_player_response,
    from_player_config,
    from_inline_scripts,
)


def get_player_response(page: PageContext,
                        strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES) -> Optional[RawMetadata]:
    """Return the first player response any strategy yields, or None."""
    for strategy in strategies:
        try:
            result = strategy(page)
        except Exception as e:
            evt("caption_metadata_strategy_failed", strategy=strategy.__name__,
                error_type=type(e).__name__, error=str(e)[:100])
            continue
        if result is not None:
            logger.debug(f"Player response found via {strategy.__name__}")
            return result
    evt("caption_metadata_not_found", url=page.url)
    return None


# --- Track parsing and selection ---

def _is_auto_generated(raw: Dict[str, Any], source_url: str) -> bool:
    if raw.get("kind") == "asr":
        return True
    try:
        return "asr" in parse_qs(urlparse(source_url).query).get("caps", [])
    except ValueError:
        return False


def caption_tracks_from_player_response(player_response: Optional[RawMetadata]) -> List[CaptionTrackDescriptor]:
    """Build descriptors from ``captions.playerCaptionsTracklistRenderer.captionTracks``; malformed items are dropped."""
    if not isinstance(player_response, dict):
        return []
    try:
        raw_tracks = player_response["captions"]["playerCaptionsTracklistRenderer"]["captionTracks"]
    except (KeyError, TypeError):
        return []
    if not isinstance(raw_tracks, list):
        return []

    tracks = []
    for raw in raw_tracks:
        if not isinstance(raw, dict):
            continue
        source_url = raw.get("baseUrl")
        if not isinstance(source_url, str) or not source_url:
            continue
        language_code = raw.get("languageCode")
        tracks.append(CaptionTrackDescriptor(
            source_url=source_url,
            language_code=language_code if isinstance(language_code, str) else "",
            is_auto_generated=_is_auto_generated(raw, source_url),
        ))
    return tracks


def list_caption_tracks(page: PageContext) -> List[CaptionTrackDescriptor]:
    return caption_tracks_from_player_response(get_player_response(page))


def pick_best_track(tracks: Sequence[CaptionTrackDescriptor],
                    preferred_lang: str = "en") -> Optional[CaptionTrackDescriptor]:
    """
    Pick a track: manual tracks win over auto-generated ones as a pool;
    within the pool, exact language match, then prefix match, then first.
    """
    if not tracks:
        return None
    manual = [t for t in tracks if not t.is_auto_generated]
    pool = manual or list(tracks)

    for track in pool:
        if track.language_code == preferred_lang:
            return track
    for track in pool:
        if track.language_code.startswith(preferred_lang):
            return track
    return pool[0]


def page_details(page: PageContext, player_response: Optional[RawMetadata] = None) -> PageDetails:
    """Descriptive registration fields from the page and ``videoDetails``."""
    details = {}
    if isinstance(player_response, dict) and isinstance(player_response.get("videoDetails"), dict):
        details = player_response["videoDetails"]
    return PageDetails(
        page_url=page.url.split("#", 1)[0],
        page_host=page.host,
        title=details.get("title") or None,
        channel_name=details.get("author") or None,
    )
