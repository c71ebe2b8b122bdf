"""
Structured event helpers: ``evt`` for one-off pipeline events, ``StageTimer``
for timed register/fetch/upload stages, ``mask_url`` for logging signed URLs.
"""

import logging
import time
from typing import Optional
from urllib.parse import urlencode, urlparse, urlunparse, parse_qs

# Events go to the root logger so they share the JSON handler
logger = logging.getLogger()

SENSITIVE_PARAMS = {'key', 'token', 'auth', 'session', 'sig', 'signature', 'sparams', 'expire'}


def evt(event: str, level: int = logging.INFO, **fields) -> None:
    """
    Log a structured event; ``fields`` become top-level JSON keys.

    Field names must not collide with LogRecord attributes
    (``name``, ``module``, ``message``, ...).

    Example:
        evt("ingest_skipped", reason="backoff")
    """
    logger.log(level, "", extra={"event": event, **fields})


def mask_url(url: str) -> str:
    """Replace the values of signature/token-like query parameters with ``***``."""
    try:
        parsed = urlparse(url)
        if not parsed.query:
            return url
        query = [
            (name, '***' if name.lower() in SENSITIVE_PARAMS else value)
            for name, values in parse_qs(parsed.query, keep_blank_values=True).items()
            for value in values
        ]
        return urlunparse(parsed._replace(query=urlencode(query)))
    except (ValueError, TypeError, AttributeError):
        return url.split('?', 1)[0] + '?***' if '?' in url else url


class StageTimer:
    """
    Time one pipeline stage.

    Logs ``stage_start`` on entry and ``stage_result`` with ``dur_ms`` and
    ``outcome`` on exit. The outcome is "success" unless ``mark()`` set one
    or an exception escaped ("error", with the exception in ``detail``).
    Exceptions are never swallowed.

    Example:
        with StageTimer("register") as timer:
            resp = await backend.register_metadata(payload, token)
            if not resp.ok:
                timer.mark("failure")
    """

    def __init__(self, stage: str, **fields):
        self.stage = stage
        self.fields = fields
        self.started: Optional[float] = None
        self.outcome: Optional[str] = None

    def mark(self, outcome: str) -> None:
        self.outcome = outcome

    def __enter__(self):
        self.started = time.time()
        evt("stage_start", stage=self.stage, **self.fields)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        elapsed_ms = int((time.time() - self.started) * 1000) if self.started else 0
        result = {"stage": self.stage, "dur_ms": elapsed_ms, **self.fields}

        if exc_type is not None:
            result["outcome"] = "error"
            result["detail"] = f"{exc_type.__name__}: {exc_value}"
        else:
            result["outcome"] = self.outcome or "success"

        evt("stage_result", **result)
        return False
