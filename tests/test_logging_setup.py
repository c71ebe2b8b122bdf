"""
Unit tests for logging_setup.py and log_events.py.

Tests JsonFormatter field order, timestamp format, per-task context,
rate limiting, library noise suppression and the StageTimer events.
"""

import asyncio
import json
import logging
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from logging_setup import (
    JsonFormatter, RateLimitFilter, set_ingest_ctx, reset_ingest_ctx, clear_ingest_ctx, get_ingest_ctx,
    configure_logging, get_logger
)
from log_events import evt, mask_url, StageTimer


def _record(msg='test message', **attrs):
    record = logging.LogRecord(
        name='test', level=logging.INFO, pathname='', lineno=0,
        msg=msg, args=(), exc_info=None
    )
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter(unittest.TestCase):
    """Test JsonFormatter field order and timestamp format."""

    def setUp(self):
        self.formatter = JsonFormatter()
        clear_ingest_ctx()

    def tearDown(self):
        clear_ingest_ctx()

    def test_field_order_consistency(self):
        """Context and record fields come out in a stable order."""
        set_ingest_ctx(content_id='native:abcdefghijk', trigger_id='t1')
        record = _record(stage='fetch', event='stage_result', outcome='success',
                         dur_ms=1500, detail='done', status=200)

        parsed = json.loads(self.formatter.format(record))

        expected_order = ['ts', 'lvl', 'content_id', 'trigger_id', 'stage', 'event',
                          'outcome', 'dur_ms', 'detail', 'status']
        self.assertEqual(list(parsed.keys()), expected_order)

    def test_timestamp_format(self):
        """ISO 8601 timestamp with millisecond precision in UTC."""
        parsed = json.loads(self.formatter.format(_record()))

        timestamp = parsed['ts']
        self.assertRegex(timestamp, r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$')
        parsed_time = datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
        self.assertEqual(parsed_time.tzinfo, timezone.utc)

    def test_null_value_omission(self):
        record = _record(stage=None, event='ingest_skipped', outcome=None)

        parsed = json.loads(self.formatter.format(record))

        self.assertNotIn('stage', parsed)
        self.assertNotIn('outcome', parsed)
        self.assertEqual(parsed['event'], 'ingest_skipped')

    def test_extra_fields_included(self):
        record = _record(msg='', event='timedtext_success', segments=12)

        parsed = json.loads(self.formatter.format(record))

        self.assertEqual(parsed['segments'], 12)
        self.assertNotIn('detail', parsed)

    def test_message_becomes_detail(self):
        parsed = json.loads(self.formatter.format(_record(msg='hello')))
        self.assertEqual(parsed['detail'], 'hello')


class TestIngestContext(unittest.TestCase):

    def setUp(self):
        clear_ingest_ctx()

    def test_set_and_clear(self):
        set_ingest_ctx(content_id='native:abcdefghijk')
        set_ingest_ctx(trigger_id='abc')
        self.assertEqual(get_ingest_ctx(), {'content_id': 'native:abcdefghijk', 'trigger_id': 'abc'})

        clear_ingest_ctx()
        self.assertEqual(get_ingest_ctx(), {})

    def test_reset_restores_previous_context(self):
        set_ingest_ctx(content_id='native:abcdefghijk')
        token = set_ingest_ctx(content_id='native:bbbbbbbbbbb', trigger_id='abc')
        self.assertEqual(get_ingest_ctx()['trigger_id'], 'abc')

        reset_ingest_ctx(token)
        self.assertEqual(get_ingest_ctx(), {'content_id': 'native:abcdefghijk'})

    def test_context_is_isolated_per_task(self):
        """Interleaved coroutines keep their own content ids."""
        seen = {}

        async def worker(content_id):
            set_ingest_ctx(content_id=content_id)
            await asyncio.sleep(0)
            seen[content_id] = get_ingest_ctx()['content_id']

        async def run_test():
            await asyncio.gather(worker('native:aaaaaaaaaaa'), worker('native:bbbbbbbbbbb'))

        asyncio.run(run_test())
        self.assertEqual(seen, {'native:aaaaaaaaaaa': 'native:aaaaaaaaaaa',
                                'native:bbbbbbbbbbb': 'native:bbbbbbbbbbb'})


class TestRateLimitFilter(unittest.TestCase):

    def test_allows_up_to_limit_then_marks_then_drops(self):
        rate_filter = RateLimitFilter(per_key=2, window_sec=60)

        results = [rate_filter.filter(_record(msg='same')) for _ in range(2)]
        self.assertEqual(results, [True, True])

        marker = _record(msg='same')
        self.assertTrue(rate_filter.filter(marker))
        self.assertTrue(marker.getMessage().endswith('[suppressed]'))

        self.assertFalse(rate_filter.filter(_record(msg='same')))

    def test_window_expiry(self):
        rate_filter = RateLimitFilter(per_key=1, window_sec=60)
        with patch('logging_setup.time.time', return_value=1000.0):
            self.assertTrue(rate_filter.filter(_record(msg='x')))
            self.assertTrue(rate_filter.filter(_record(msg='x')))  # suppression marker
            self.assertFalse(rate_filter.filter(_record(msg='x')))
        with patch('logging_setup.time.time', return_value=1061.0):
            self.assertTrue(rate_filter.filter(_record(msg='x')))

    def test_structured_events_keyed_by_event_name(self):
        rate_filter = RateLimitFilter(per_key=1, window_sec=60)
        self.assertTrue(rate_filter.filter(_record(msg='', event='a')))
        self.assertTrue(rate_filter.filter(_record(msg='', event='b')))


class TestConfigureLogging(unittest.TestCase):

    def tearDown(self):
        logging.getLogger().handlers.clear()

    def test_json_handler_installed(self):
        root = configure_logging("DEBUG", use_json=True)
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertIsInstance(root.handlers[0].formatter, JsonFormatter)

    def test_library_noise_suppressed(self):
        configure_logging("INFO")
        for name in ('httpx', 'httpcore', 'urllib3', 'asyncio'):
            self.assertEqual(logging.getLogger(name).level, logging.WARNING)

    def test_get_logger(self):
        self.assertEqual(get_logger('x.y').name, 'x.y')


class TestLogEvents(unittest.TestCase):

    def test_evt_emits_structured_record(self):
        with self.assertLogs(level='INFO') as captured:
            evt("ingest_skipped", reason="backoff")
        record = captured.records[0]
        self.assertEqual(record.event, "ingest_skipped")
        self.assertEqual(record.reason, "backoff")

    def test_stage_timer_success_and_mark(self):
        with self.assertLogs(level='INFO') as captured:
            with StageTimer("register") as timer:
                timer.mark("failure")
        events = [(r.event, getattr(r, 'outcome', None)) for r in captured.records]
        self.assertEqual(events, [("stage_start", None), ("stage_result", "failure")])
        self.assertIsInstance(captured.records[1].dur_ms, int)

    def test_stage_timer_error_propagates(self):
        with self.assertLogs(level='INFO') as captured:
            with self.assertRaises(RuntimeError):
                with StageTimer("upload"):
                    raise RuntimeError("boom")
        result = captured.records[-1]
        self.assertEqual(result.outcome, "error")
        self.assertIn("RuntimeError: boom", result.detail)

    def test_mask_url(self):
        masked = mask_url("https://www.youtube.com/api/timedtext?v=abc&signature=SECRET&lang=en")
        self.assertNotIn("SECRET", masked)
        self.assertIn("v=abc", masked)
        self.assertIn("lang=en", masked)


if __name__ == '__main__':
    unittest.main()
