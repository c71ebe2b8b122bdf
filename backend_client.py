"""
Client for the votes/transcripts backend.

Every call returns an ApiResponse. HTTP status failures are returned as-is;
connection-level failures are retried with exponential backoff and jitter,
then reported as ``ApiResponse(ok=False, status=None)``.
"""

from typing import Optional, Dict, List, Any
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential_jitter, retry_if_exception_type

from logging_setup import get_logger
from log_events import evt
from models import ApiResponse, TranscriptSegment

logger = get_logger(__name__)

BACKOFF_MIN = 0.5
BACKOFF_MAX = 4.0

VOTE_PATH = "/api/vote"
REGISTER_PATH = "/api/youtube/register"


def summary_path(content_id: str) -> str:
    return f"/api/content/{quote(content_id, safe='')}/summary"


def transcript_path(content_id: str) -> str:
    return f"/api/content/{quote(content_id, safe='')}/transcript"


class BackendClient:
    """
    Async wrapper around the backend HTTP API.

    Args:
        base_url: Backend root, e.g. ``http://localhost:3000``
        timeout: Per-request timeout in seconds
        connect_retries: Extra attempts after a connection-level failure
        transport: Optional transport override (used by tests)
    """

    def __init__(self, base_url: str, timeout: float = 20, connect_retries: int = 2,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 backoff_min: float = BACKOFF_MIN, backoff_max: float = BACKOFF_MAX):
        self.base_url = base_url.rstrip("/")
        self.connect_retries = connect_retries
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> 'BackendClient':
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.aclose()

    def _log_retry(self, retry_state) -> None:
        logger.info(
            f"Backend request failed ({retry_state.outcome.exception()!r}), "
            f"retrying in {retry_state.next_action.sleep:.2f}s..."
        )

    async def _request(self, method: str, path: str, token: str,
                       json_body: Any = None, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        headers = {"Authorization": f"Bearer {token}"}
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(1 + max(0, self.connect_retries)),
                wait=wait_exponential_jitter(initial=self.backoff_min, max=self.backoff_max),
                retry=retry_if_exception_type(httpx.TransportError),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    resp = await self.client.request(method, path, headers=headers,
                                                     json=json_body, params=params)
        except httpx.HTTPError as e:
            evt("backend_request_failed", method=method, path=path,
                error_type=type(e).__name__, error=str(e)[:100])
            return ApiResponse(ok=False, error=f"{type(e).__name__}: {e}")

        try:
            data = resp.json()
        except ValueError:
            data = None

        if not resp.is_success:
            evt("backend_request_rejected", method=method, path=path, status=resp.status_code)
            error = data.get("error") if isinstance(data, dict) else None
            return ApiResponse(ok=False, status=resp.status_code, data=data,
                               error=error or f"HTTP {resp.status_code}")

        return ApiResponse(ok=True, status=resp.status_code, data=data)

    async def register_metadata(self, payload: Dict[str, Any], token: str) -> ApiResponse:
        """POST the registration payload; ``data.alreadyFetched`` tells whether a transcript is stored."""
        return await self._request("POST", REGISTER_PATH, token, json_body=payload)

    async def upload_transcript(self, content_id: str, segments: List[TranscriptSegment],
                                token: str) -> ApiResponse:
        body = {"contentId": content_id, "segments": [s.to_dict() for s in segments]}
        return await self._request("POST", transcript_path(content_id), token, json_body=body)

    async def submit_vote(self, payload: Dict[str, Any], token: str) -> ApiResponse:
        return await self._request("POST", VOTE_PATH, token, json_body=payload)

    async def get_summary(self, content_id: str, token: str, limit: int = 10) -> ApiResponse:
        return await self._request("GET", summary_path(content_id), token, params={"limit": limit})

    async def get_transcript(self, content_id: str, token: str) -> ApiResponse:
        return await self._request("GET", transcript_path(content_id), token)
