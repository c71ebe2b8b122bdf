#!/usr/bin/env python3
"""
Error categorization and user-facing messages for ingestion results
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Any

from models import IngestionOutcome, IngestionResult

CATEGORY_OK = "ok"
CATEGORY_SKIPPED = "skipped"
CATEGORY_AUTH = "auth"
CATEGORY_RATE_LIMIT = "rate_limit"
CATEGORY_TRANSIENT = "transient"
CATEGORY_TERMINAL = "terminal"
CATEGORY_UNEXPECTED = "unexpected"

_CATEGORIES = {
    IngestionOutcome.UPLOADED: CATEGORY_OK,
    IngestionOutcome.SKIPPED_ALREADY_DONE: CATEGORY_SKIPPED,
    IngestionOutcome.SKIPPED_BACKOFF: CATEGORY_SKIPPED,
    IngestionOutcome.SKIPPED_IN_FLIGHT: CATEGORY_SKIPPED,
    IngestionOutcome.NOT_AUTHENTICATED: CATEGORY_AUTH,
    IngestionOutcome.RATE_LIMITED: CATEGORY_RATE_LIMIT,
    IngestionOutcome.REGISTRATION_FAILED: CATEGORY_TRANSIENT,
    IngestionOutcome.FETCH_FAILED: CATEGORY_TRANSIENT,
    IngestionOutcome.EMPTY_TRANSCRIPT: CATEGORY_TRANSIENT,
    IngestionOutcome.UPLOAD_FAILED: CATEGORY_TRANSIENT,
    IngestionOutcome.NO_CAPTION_TRACK: CATEGORY_TERMINAL,
    IngestionOutcome.ALREADY_FETCHED_BACKEND: CATEGORY_TERMINAL,
    IngestionOutcome.ERROR: CATEGORY_UNEXPECTED,
}

# Informational categories are logged below WARNING
_LOG_LEVELS = {
    CATEGORY_OK: logging.INFO,
    CATEGORY_SKIPPED: logging.DEBUG,
    CATEGORY_TERMINAL: logging.INFO,
    CATEGORY_AUTH: logging.WARNING,
    CATEGORY_RATE_LIMIT: logging.WARNING,
    CATEGORY_TRANSIENT: logging.WARNING,
    CATEGORY_UNEXPECTED: logging.ERROR,
}


def classify_result(result: IngestionResult) -> str:
    """Map an ingestion result to its error category"""
    return _CATEGORIES.get(result.outcome, CATEGORY_UNEXPECTED)


def user_message(result: IngestionResult) -> str:
    """Short UI string for an ingestion result"""
    outcome = result.outcome
    if outcome is IngestionOutcome.UPLOADED:
        return f"Transcript saved ({result.segment_count} segments)"
    if outcome is IngestionOutcome.ALREADY_FETCHED_BACKEND:
        return "Transcript already available"
    if outcome is IngestionOutcome.SKIPPED_ALREADY_DONE:
        return "Transcript already handled this session"
    if outcome is IngestionOutcome.SKIPPED_BACKOFF:
        return "Captions paused for this video after rate limiting. Try later."
    if outcome is IngestionOutcome.SKIPPED_IN_FLIGHT:
        return "Transcript fetch already in progress"
    if outcome is IngestionOutcome.NOT_AUTHENTICATED:
        return "Not logged in"
    if outcome is IngestionOutcome.RATE_LIMITED:
        status = result.status if result.status is not None else 429
        return f"YouTube captions rate-limited ({status}). Try later."
    if outcome is IngestionOutcome.NO_CAPTION_TRACK:
        return "No caption track found for this video"
    if outcome is IngestionOutcome.EMPTY_TRANSCRIPT:
        return "Caption track was empty"
    if outcome is IngestionOutcome.REGISTRATION_FAILED:
        return "Could not register video (check backend)"
    if outcome is IngestionOutcome.UPLOAD_FAILED:
        return "Transcript upload failed (check backend)"
    if outcome is IngestionOutcome.FETCH_FAILED:
        return "Could not fetch captions"
    return "Transcript unavailable: Processing error"


class ErrorHandler:
    """Counts ingestion failures per category and logs them at the right severity"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.error_counts: Dict[str, int] = {}
        self.last_errors: Dict[str, Dict[str, Any]] = {}

    def handle_result(self, result: IngestionResult) -> str:
        """Record a result and return its user-facing message"""
        category = classify_result(result)
        message = user_message(result)

        if category not in (CATEGORY_OK, CATEGORY_SKIPPED):
            self.error_counts[category] = self.error_counts.get(category, 0) + 1
            self.last_errors[category] = {
                "content_id": result.content_id,
                "outcome": result.outcome.value,
                "status": result.status,
                "error": result.error,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        self.logger.log(
            _LOG_LEVELS[category],
            f"ingestion_result content_id={result.content_id} outcome={result.outcome.value} "
            f"category={category} status={result.status}",
        )
        return message

    def get_error_summary(self) -> Dict[str, Any]:
        """Counters and last error per category, for diagnostics"""
        return {
            "error_counts": dict(self.error_counts),
            "last_errors": dict(self.last_errors),
            "total_errors": sum(self.error_counts.values()),
        }

    def reset(self) -> None:
        self.error_counts.clear()
        self.last_errors.clear()
