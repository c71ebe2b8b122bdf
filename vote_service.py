"""
Vote submission and moment loading on top of the ingestion core.

A vote is the only trigger for caption ingestion: when a vote on a YouTube
page succeeds, the page's best caption track is located and handed to the
IngestionCoordinator.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from caption_tracks import get_player_response, caption_tracks_from_player_response, pick_best_track, page_details
from content_identity import resolve_content_item, DEFAULT_PREFIX_LEN
from error_handler import ErrorHandler
from ingestion_coordinator import IngestionCoordinator
from logging_setup import get_logger
from log_events import evt
from models import ApiResponse, ContentItem, IdScheme, IngestionResult, PageContext
from moments import Moment, moments_from_summary, segments_from_payload
from token_manager import NotAuthenticatedError

logger = get_logger(__name__)

VOTE_UP = "UP"
VOTE_DOWN = "DOWN"
VALID_VOTES = (VOTE_UP, VOTE_DOWN)


@dataclass
class VoteResult:
    content_id: str
    vote: ApiResponse
    ingestion: Optional[IngestionResult] = None
    message: str = ""


@dataclass
class MomentsResult:
    content_id: str
    ok: bool
    moments: List[Moment] = field(default_factory=list)
    transcript_status: str = "not_loaded"
    segment_count: int = 0
    error: Optional[str] = None


class VoteService:

    def __init__(self, backend, coordinator: IngestionCoordinator, credentials,
                 preferred_lang: str = "en", hash_prefix_len: int = DEFAULT_PREFIX_LEN,
                 error_handler: Optional[ErrorHandler] = None):
        self.backend = backend
        self.coordinator = coordinator
        self.credentials = credentials
        self.preferred_lang = preferred_lang
        self.hash_prefix_len = hash_prefix_len
        self.error_handler = error_handler or ErrorHandler()

    def content_item(self, page: PageContext) -> ContentItem:
        return resolve_content_item(page.url, page.media_url, page.host, self.hash_prefix_len)

    async def vote(self, page: PageContext, time_seconds: float, vote: str) -> VoteResult:
        """
        Submit a vote for the moment ``time_seconds`` and, on YouTube, try
        to ingest the caption track. Ingestion runs only after a successful vote.
        """
        vote = (vote or "").upper()
        if vote not in VALID_VOTES:
            raise ValueError(f"vote must be one of {VALID_VOTES}, got {vote!r}")

        item = self.content_item(page)
        try:
            token = self.credentials.get_token()
        except NotAuthenticatedError as e:
            return VoteResult(item.id, ApiResponse(ok=False, error=str(e)), message=str(e))

        payload = {
            "contentId": item.id,
            "pageUrl": page.url.split("#", 1)[0],
            "pageHost": page.host,
            "timeSeconds": max(0.0, float(time_seconds or 0)),
            "vote": vote,
        }
        resp = await self.backend.submit_vote(payload, token)
        if not resp.ok:
            evt("vote_failed", status=resp.status, error=resp.error)
            return VoteResult(item.id, resp, message="Save failed (check backend)")

        evt("vote_saved", vote=vote, time_seconds=payload["timeSeconds"])
        result = VoteResult(item.id, resp, message="Saved")

        if item.id_scheme is IdScheme.PLATFORM_NATIVE:
            result.ingestion = await self.ingest(page, item, token)
            result.message = f"Saved; {self.error_handler.handle_result(result.ingestion)}"
        return result

    async def ingest(self, page: PageContext, item: Optional[ContentItem] = None,
                     token: Optional[str] = None) -> Optional[IngestionResult]:
        """Locate the caption track on a YouTube page and trigger ingestion. None for other pages."""
        item = item or self.content_item(page)
        if item.id_scheme is not IdScheme.PLATFORM_NATIVE:
            return None

        player_response = get_player_response(page)
        track = pick_best_track(caption_tracks_from_player_response(player_response), self.preferred_lang)
        details = page_details(page, player_response)
        return await self.coordinator.trigger(item.id, track, token, details)

    async def load_moments(self, page: PageContext, include_transcript: bool = True,
                           limit: int = 50, window_sec: int = 5) -> MomentsResult:
        """Fetch the vote summary and, optionally, the stored transcript for the page's content."""
        item = self.content_item(page)
        try:
            token = self.credentials.get_token()
        except NotAuthenticatedError as e:
            return MomentsResult(item.id, ok=False, error=str(e))

        summary = await self.backend.get_summary(item.id, token, limit)
        if not summary.ok:
            return MomentsResult(item.id, ok=False, error=summary.error or "Summary fetch failed")

        segments = None
        status = "not_loaded"
        if include_transcript:
            transcript = await self.backend.get_transcript(item.id, token)
            if transcript.ok:
                segments = segments_from_payload(transcript.data)
                status = "loaded" if segments else "empty"
            else:
                status = "unavailable"
                logger.info(f"Transcript unavailable for {item.id}: {transcript.error}")

        moments = moments_from_summary(summary.data, item.id, page.url, segments, window_sec)
        return MomentsResult(item.id, ok=True, moments=moments, transcript_status=status,
                             segment_count=len(segments or []))
