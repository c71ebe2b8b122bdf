"""
Structured logging for the caption ingestion pipeline.

One JSON object per line, with the ingestion correlation context
(``content_id``, ``trigger_id``) held in a ContextVar so interleaved
coroutines never see each other's ids. A per-key rate limiter keeps
repeated failures from flooding the output.
"""

import json
import logging
import threading
import time
from collections import defaultdict, deque
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional, Set


_ingest_ctx: ContextVar[Optional[Dict[str, str]]] = ContextVar("ingest_ctx", default=None)

CONTEXT_FIELDS = ("content_id", "trigger_id")
RECORD_FIELDS = ("stage", "event", "outcome", "dur_ms", "detail")
OPTIONAL_FIELDS = ("status", "reason", "fmt", "attempt")

# LogRecord attributes that never belong in the JSON payload
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "taskName", "ts", "lvl",
}

NOISY_LIBRARIES = ("urllib3", "asyncio", "httpx", "httpcore")


def set_ingest_ctx(content_id: str = None, trigger_id: str = None) -> Token:
    """
    Merge correlation ids into the current task's context.

    Args:
        content_id: Content item being ingested
        trigger_id: Identifier of the trigger invocation

    Returns:
        Token for ``reset_ingest_ctx`` to restore the previous context
    """
    updated = get_ingest_ctx()
    for key, value in (("content_id", content_id), ("trigger_id", trigger_id)):
        if value is not None:
            updated[key] = value
    return _ingest_ctx.set(updated)


def reset_ingest_ctx(token: Token):
    _ingest_ctx.reset(token)


def clear_ingest_ctx():
    _ingest_ctx.set({})


def get_ingest_ctx() -> Dict[str, str]:
    return dict(_ingest_ctx.get() or {})


def _utc_millis(created: float) -> str:
    stamp = datetime.fromtimestamp(created, tz=timezone.utc)
    return f"{stamp:%Y-%m-%dT%H:%M:%S}.{stamp.microsecond // 1000:03d}Z"


class JsonFormatter(logging.Formatter):
    """
    Single-line JSON with a fixed key order:
    ts, lvl, content_id, trigger_id, stage, event, outcome, dur_ms, detail,
    then status/reason/fmt/attempt, then any other ``extra`` fields.
    Keys whose value is None are left out.
    """

    _ordered = RECORD_FIELDS + OPTIONAL_FIELDS
    _standard_fields = _RESERVED_ATTRS | set(CONTEXT_FIELDS) | set(RECORD_FIELDS) | set(OPTIONAL_FIELDS)

    def _payload(self, record: logging.LogRecord) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ts": _utc_millis(record.created), "lvl": record.levelname}

        ctx = get_ingest_ctx()
        payload.update((key, ctx[key]) for key in CONTEXT_FIELDS if key in ctx)
        payload.update(
            (key, getattr(record, key)) for key in self._ordered
            if getattr(record, key, None) is not None
        )
        payload.update(
            (key, value) for key, value in vars(record).items()
            if not key.startswith("_") and key not in self._standard_fields
            and value is not None and not callable(value)
        )

        message = record.getMessage()
        if message and "detail" not in payload:
            payload["detail"] = message
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return payload

    def format(self, record: logging.LogRecord) -> str:
        try:
            return json.dumps(self._payload(record), separators=(",", ":"), ensure_ascii=False, default=str)
        except Exception:
            # A broken extra must not lose the line
            return json.dumps({"ts": _utc_millis(time.time()), "lvl": record.levelname, "detail": str(record.msg)})


class RateLimitFilter(logging.Filter):
    """
    Pass at most ``per_key`` records per key within a sliding ``window_sec``.

    The first record over the limit goes through once with a ``[suppressed]``
    suffix; the rest are dropped until the window frees up.
    """

    def __init__(self, per_key: int = 5, window_sec: int = 60):
        super().__init__()
        self.per_key = per_key
        self.window_sec = window_sec
        self._seen: Dict[str, Deque[float]] = defaultdict(deque)
        self._muted: Set[str] = set()
        self._lock = threading.Lock()

    def _key(self, record: logging.LogRecord) -> str:
        event = getattr(record, "event", None)
        if event:
            # evt() records carry no message; key them by event and content
            return f"{record.levelname}:{event}:{get_ingest_ctx().get('content_id', '')}"
        return f"{record.levelname}:{record.getMessage()[:100]}"

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            key = self._key(record)
        except Exception:
            return True

        now = time.time()
        with self._lock:
            stamps = self._seen[key]
            while stamps and stamps[0] <= now - self.window_sec:
                stamps.popleft()

            if len(stamps) < self.per_key:
                stamps.append(now)
                self._muted.discard(key)
                return True
            if key in self._muted:
                return False
            self._muted.add(key)

        record.msg = f"{record.getMessage()} [suppressed]"
        record.args = ()
        return True


def configure_logging(log_level: str = "INFO", use_json: bool = True) -> logging.Logger:
    """
    Install a single stderr handler on the root logger.

    Args:
        log_level: Root level name (DEBUG, INFO, WARNING, ERROR)
        use_json: JSON lines with rate limiting, or plain text for local debugging

    Returns:
        The root logger
    """
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(JsonFormatter())
        handler.addFilter(RateLimitFilter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root.addHandler(handler)

    _suppress_library_noise()
    return root


def _suppress_library_noise():
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = None) -> logging.Logger:
    return logging.getLogger(name)
