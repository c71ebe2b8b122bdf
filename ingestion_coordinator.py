"""
Per-content ingestion state machine.

A trigger walks one content id through
``Eligible -> MetaDone -> {Uploaded | Backoff | FailedTransient}``:
register metadata once, fetch the caption track, upload the segments.

Session flags (``meta_done``, ``uploaded``, ``backoff``) live in the injected
SessionStore; ``uploaded`` and ``backoff`` are sticky until the store is
cleared. The in-flight set is process-local and guarantees at most one run
per content id at a time; runs for different ids interleave freely.
"""

import uuid
from typing import Optional, Dict, Any, FrozenSet, Set

from logging_setup import get_logger, set_ingest_ctx, reset_ingest_ctx
from log_events import evt, StageTimer
from models import (
    CaptionTrackDescriptor, IngestionOutcome, IngestionResult, PageDetails,
)
from session_store import (
    SessionStore, IngestionState, meta_key, uploaded_key, backoff_key, load_ingestion_state,
)
from timedtext_service import TimedtextService, NO_SEGMENTS
from token_manager import NotAuthenticatedError

logger = get_logger(__name__)


def build_registration_payload(content_id: str, track: Optional[CaptionTrackDescriptor],
                               details: Optional[PageDetails]) -> Dict[str, Any]:
    details = details or PageDetails(page_url="", page_host="")
    return {
        "contentId": content_id,
        "captionBaseUrl": track.source_url if track else None,
        "captionLanguage": track.language_code if track else None,
        "captionIsAuto": track.is_auto_generated if track else None,
        "title": details.title,
        "channelName": details.channel_name,
        "pageUrl": details.page_url,
        "pageHost": details.page_host,
    }


class IngestionCoordinator:
    """
    Sequence registration, transcript fetch and upload for content items.

    Args:
        store: Session-scoped flag store
        backend: Object with ``register_metadata`` and ``upload_transcript`` coroutines
        engine: TimedtextService used to fetch caption tracks
        credentials: Provider with ``get_token()``; used when a trigger carries no token
    """

    def __init__(self, store: SessionStore, backend, engine: TimedtextService, credentials=None):
        self.store = store
        self.backend = backend
        self.engine = engine
        self.credentials = credentials
        self._in_flight: Set[str] = set()

    @property
    def in_flight(self) -> FrozenSet[str]:
        return frozenset(self._in_flight)

    async def state(self, content_id: str) -> IngestionState:
        return await load_ingestion_state(self.store, content_id)

    def _resolve_token(self, token: Optional[str]) -> str:
        if token:
            return token
        if self.credentials is None:
            raise NotAuthenticatedError()
        return self.credentials.get_token()

    def _skip(self, content_id: str, outcome: IngestionOutcome) -> IngestionResult:
        evt("ingest_skipped", reason=outcome.value)
        return IngestionResult(content_id, outcome)

    async def trigger(self, content_id: str, track: Optional[CaptionTrackDescriptor],
                      token: Optional[str] = None,
                      details: Optional[PageDetails] = None) -> IngestionResult:
        """
        Run the ingestion pipeline for ``content_id`` if it is eligible.

        Never raises: unexpected errors come back as ``IngestionOutcome.ERROR``.
        """
        ctx_token = set_ingest_ctx(content_id=content_id, trigger_id=uuid.uuid4().hex[:8])
        try:
            skipped = await self._sticky_skip(content_id)
            if skipped:
                return skipped

            # Check and add with no await in between
            if content_id in self._in_flight:
                return self._skip(content_id, IngestionOutcome.SKIPPED_IN_FLIGHT)
            self._in_flight.add(content_id)
            try:
                # A run that finished while the flags above were being read has set them by now
                skipped = await self._sticky_skip(content_id)
                if skipped:
                    return skipped
                return await self._run(content_id, track, token, details)
            finally:
                self._in_flight.discard(content_id)

        except NotAuthenticatedError as e:
            evt("ingest_failed", reason=IngestionOutcome.NOT_AUTHENTICATED.value)
            return IngestionResult(content_id, IngestionOutcome.NOT_AUTHENTICATED, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected ingestion failure for {content_id}")
            evt("ingest_failed", reason=IngestionOutcome.ERROR.value, error_type=type(e).__name__)
            return IngestionResult(content_id, IngestionOutcome.ERROR, error=f"{type(e).__name__}: {e}")
        finally:
            reset_ingest_ctx(ctx_token)

    async def _sticky_skip(self, content_id: str) -> Optional[IngestionResult]:
        if await self.store.get(uploaded_key(content_id)):
            return self._skip(content_id, IngestionOutcome.SKIPPED_ALREADY_DONE)
        if await self.store.get(backoff_key(content_id)):
            return self._skip(content_id, IngestionOutcome.SKIPPED_BACKOFF)
        return None

    async def _run(self, content_id: str, track: Optional[CaptionTrackDescriptor],
                   token: Optional[str], details: Optional[PageDetails]) -> IngestionResult:
        # Auth failures stop the trigger before any network call or flag write
        auth = self._resolve_token(token)

        if not await self.store.get(meta_key(content_id)):
            payload = build_registration_payload(content_id, track, details)

            with StageTimer("register") as timer:
                resp = await self.backend.register_metadata(payload, auth)
                if not resp.ok:
                    timer.mark("failure")

            if not resp.ok:
                evt("ingest_failed", reason=IngestionOutcome.REGISTRATION_FAILED.value, status=resp.status)
                return IngestionResult(content_id, IngestionOutcome.REGISTRATION_FAILED,
                                       status=resp.status, error=resp.error, data=resp.data)

            await self.store.set(meta_key(content_id), True)
            evt("ingest_registered")

            data = resp.data if isinstance(resp.data, dict) else {}
            if data.get("alreadyFetched"):
                stored_lang = data.get("language") or data.get("captionLanguage")
                if track and stored_lang and stored_lang != track.language_code:
                    # Accepted for a single-session cache; no re-fetch
                    evt("ingest_backend_language_mismatch", stored=stored_lang, detected=track.language_code)
                await self.store.set(uploaded_key(content_id), True)
                evt("ingest_uploaded", reason=IngestionOutcome.ALREADY_FETCHED_BACKEND.value)
                return IngestionResult(content_id, IngestionOutcome.ALREADY_FETCHED_BACKEND, data=resp.data)

        if track is None:
            await self.store.set(uploaded_key(content_id), True)
            evt("ingest_failed", reason=IngestionOutcome.NO_CAPTION_TRACK.value)
            return IngestionResult(content_id, IngestionOutcome.NO_CAPTION_TRACK,
                                   error="No caption track available")

        with StageTimer("fetch", lang=track.language_code) as timer:
            fetched = await self.engine.fetch_transcript(track.source_url)
            if not fetched.ok:
                timer.mark("failure")

        if not fetched.ok:
            if fetched.rate_limited:
                await self.store.set(backoff_key(content_id), True)
                evt("ingest_backoff_set", status=fetched.status)
                return IngestionResult(content_id, IngestionOutcome.RATE_LIMITED,
                                       status=fetched.status, error="Rate limited")
            if fetched.error == NO_SEGMENTS:
                evt("ingest_failed", reason=IngestionOutcome.EMPTY_TRANSCRIPT.value)
                return IngestionResult(content_id, IngestionOutcome.EMPTY_TRANSCRIPT,
                                       status=fetched.status, error="Empty transcript")
            evt("ingest_failed", reason=IngestionOutcome.FETCH_FAILED.value, status=fetched.status)
            return IngestionResult(content_id, IngestionOutcome.FETCH_FAILED,
                                   status=fetched.status, error=fetched.error)

        with StageTimer("upload", segments=len(fetched.segments)) as timer:
            resp = await self.backend.upload_transcript(content_id, fetched.segments, auth)
            if not resp.ok:
                timer.mark("failure")

        if not resp.ok:
            evt("ingest_failed", reason=IngestionOutcome.UPLOAD_FAILED.value, status=resp.status)
            return IngestionResult(content_id, IngestionOutcome.UPLOAD_FAILED,
                                   status=resp.status, error=resp.error, data=resp.data)

        await self.store.set(uploaded_key(content_id), True)
        evt("ingest_uploaded", segments=len(fetched.segments), fmt=fetched.fmt)
        return IngestionResult(content_id, IngestionOutcome.UPLOADED,
                               status=resp.status, segment_count=len(fetched.segments), data=resp.data)
