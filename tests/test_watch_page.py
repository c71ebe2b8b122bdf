"""
Tests for watch_page.py with a mocked requests session.
"""

import json
import unittest
from unittest.mock import MagicMock

import requests

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from caption_tracks import list_caption_tracks
from watch_page import (
    PageContextUnavailableError, create_page_session, extract_inline_scripts, load_page_context,
)

PLAYER_RESPONSE = {"captions": {"playerCaptionsTracklistRenderer": {"captionTracks": [
    {"baseUrl": "https://www.youtube.com/api/timedtext?v=dQw4w9WgXcQ&lang=en", "languageCode": "en"},
]}}}

PAGE_HTML = (
    "<html><head><script src=\"/player.js\"></script>"
    "<script>var a = '<b>';</script></head><body>"
    f"<script>var ytInitialPlayerResponse = {json.dumps(PLAYER_RESPONSE)};</script>"
    "</body></html>"
)


def mock_session(status=200, text=PAGE_HTML, error=None):
    session = MagicMock()
    if error:
        session.get.side_effect = error
    else:
        resp = MagicMock()
        resp.ok = 200 <= status < 300
        resp.status_code = status
        resp.text = text
        resp.content = text.encode()
        session.get.return_value = resp
    session.cookies.get_dict.return_value = {"VISITOR_INFO1_LIVE": "abc"}
    return session


class TestExtractInlineScripts(unittest.TestCase):

    def test_only_inline_scripts(self):
        scripts = extract_inline_scripts(PAGE_HTML)
        self.assertEqual(len(scripts), 2)
        self.assertEqual(scripts[0], "var a = '<b>';")
        self.assertIn("ytInitialPlayerResponse", scripts[1])

    def test_empty(self):
        self.assertEqual(extract_inline_scripts(""), [])


class TestLoadPageContext(unittest.TestCase):

    def test_builds_page_context(self):
        session = mock_session()
        page, cookies = load_page_context("https://www.youtube.com/watch?v=dQw4w9WgXcQ#x", session)

        self.assertEqual(page.url, "https://www.youtube.com/watch?v=dQw4w9WgXcQ")
        self.assertEqual(page.host, "www.youtube.com")
        self.assertEqual(cookies, {"VISITOR_INFO1_LIVE": "abc"})
        self.assertEqual(len(list_caption_tracks(page)), 1)

    def test_http_error(self):
        with self.assertRaises(PageContextUnavailableError):
            load_page_context("https://www.youtube.com/watch?v=dQw4w9WgXcQ", mock_session(status=503))

    def test_transport_error(self):
        session = mock_session(error=requests.exceptions.ConnectionError("down"))
        with self.assertRaises(PageContextUnavailableError):
            load_page_context("https://www.youtube.com/watch?v=dQw4w9WgXcQ", session)


class TestCreatePageSession(unittest.TestCase):

    def test_retry_adapter_and_cookies(self):
        session = create_page_session("SID=abc; HSID=def")
        adapter = session.get_adapter("https://www.youtube.com/")
        self.assertEqual(adapter.max_retries.total, 3)
        self.assertIn(503, adapter.max_retries.status_forcelist)
        self.assertEqual(session.cookies.get("SID"), "abc")


if __name__ == '__main__':
    unittest.main()
