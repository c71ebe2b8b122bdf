#!/usr/bin/env python3
"""
Tests for error_handler.py categories, messages and counters
"""
import logging
import unittest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from error_handler import (
    ErrorHandler, classify_result, user_message,
    CATEGORY_OK, CATEGORY_SKIPPED, CATEGORY_RATE_LIMIT, CATEGORY_TRANSIENT, CATEGORY_TERMINAL,
    CATEGORY_UNEXPECTED, CATEGORY_AUTH,
)
from models import IngestionOutcome, IngestionResult

CONTENT_ID = "native:dQw4w9WgXcQ"


def result(outcome, **kwargs):
    return IngestionResult(CONTENT_ID, outcome, **kwargs)


class TestClassification(unittest.TestCase):

    def test_every_outcome_has_a_category(self):
        for outcome in IngestionOutcome:
            with self.subTest(outcome=outcome):
                self.assertIn(classify_result(result(outcome)), (
                    CATEGORY_OK, CATEGORY_SKIPPED, CATEGORY_AUTH, CATEGORY_RATE_LIMIT,
                    CATEGORY_TRANSIENT, CATEGORY_TERMINAL, CATEGORY_UNEXPECTED,
                ))

    def test_selected_categories(self):
        self.assertEqual(classify_result(result(IngestionOutcome.UPLOADED)), CATEGORY_OK)
        self.assertEqual(classify_result(result(IngestionOutcome.SKIPPED_BACKOFF)), CATEGORY_SKIPPED)
        self.assertEqual(classify_result(result(IngestionOutcome.RATE_LIMITED)), CATEGORY_RATE_LIMIT)
        self.assertEqual(classify_result(result(IngestionOutcome.UPLOAD_FAILED)), CATEGORY_TRANSIENT)
        self.assertEqual(classify_result(result(IngestionOutcome.NO_CAPTION_TRACK)), CATEGORY_TERMINAL)
        self.assertEqual(classify_result(result(IngestionOutcome.ERROR)), CATEGORY_UNEXPECTED)


class TestUserMessage(unittest.TestCase):

    def test_messages(self):
        self.assertEqual(user_message(result(IngestionOutcome.UPLOADED, segment_count=12)),
                         "Transcript saved (12 segments)")
        self.assertEqual(user_message(result(IngestionOutcome.RATE_LIMITED, status=429)),
                         "YouTube captions rate-limited (429). Try later.")
        self.assertEqual(user_message(result(IngestionOutcome.NO_CAPTION_TRACK)),
                         "No caption track found for this video")
        self.assertEqual(user_message(result(IngestionOutcome.NOT_AUTHENTICATED)), "Not logged in")

    def test_every_outcome_has_a_message(self):
        for outcome in IngestionOutcome:
            with self.subTest(outcome=outcome):
                self.assertTrue(user_message(result(outcome)))


class TestErrorHandler(unittest.TestCase):

    def test_counts_failures_only(self):
        handler = ErrorHandler()
        handler.handle_result(result(IngestionOutcome.UPLOADED, segment_count=1))
        handler.handle_result(result(IngestionOutcome.SKIPPED_IN_FLIGHT))
        handler.handle_result(result(IngestionOutcome.RATE_LIMITED, status=429))
        handler.handle_result(result(IngestionOutcome.RATE_LIMITED, status=429))
        handler.handle_result(result(IngestionOutcome.FETCH_FAILED, status=404, error="status=404"))

        summary = handler.get_error_summary()
        self.assertEqual(summary["error_counts"], {CATEGORY_RATE_LIMIT: 2, CATEGORY_TRANSIENT: 1})
        self.assertEqual(summary["total_errors"], 3)
        self.assertEqual(summary["last_errors"][CATEGORY_TRANSIENT]["status"], 404)

        handler.reset()
        self.assertEqual(handler.get_error_summary()["total_errors"], 0)

    def test_log_levels(self):
        handler = ErrorHandler()
        with self.assertLogs("error_handler", level="DEBUG") as captured:
            handler.handle_result(result(IngestionOutcome.ERROR, error="boom"))
            handler.handle_result(result(IngestionOutcome.SKIPPED_ALREADY_DONE))
        levels = [record.levelno for record in captured.records]
        self.assertEqual(levels, [logging.ERROR, logging.DEBUG])


if __name__ == '__main__':
    unittest.main()
