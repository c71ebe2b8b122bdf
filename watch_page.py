"""
Page context accessor for running outside a browser.

Downloads a watch page with the viewer's cookies and turns it into a
PageContext: the page URL and host plus the text of every inline script.
The caption locator's script-scanning strategy works from that.
"""

from html.parser import HTMLParser
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from logging_setup import get_logger
from log_events import evt, mask_url
from models import PageContext
from timedtext_service import TIMEDTEXT_USER_AGENT, cookies_from_header

logger = get_logger(__name__)

WATCH_PAGE_TIMEOUT = 15
WATCH_PAGE_RETRY_ATTEMPTS = 3


class PageContextUnavailableError(Exception):
    """Raised when the page itself cannot be loaded."""


class _InlineScriptCollector(HTMLParser):
    """Collects the text of ``<script>`` elements without a ``src``."""

    def __init__(self):
        super().__init__(convert_charrefs=False)
        self.scripts: List[str] = []
        self._current: Optional[List[str]] = None

    def handle_starttag(self, tag, attrs):
        if tag == "script" and not any(name == "src" for name, _ in attrs):
            self._current = []

    def handle_endtag(self, tag):
        if tag == "script" and self._current is not None:
            self.scripts.append("".join(self._current))
            self._current = None

    def handle_data(self, data):
        if self._current is not None:
            self._current.append(data)


def extract_inline_scripts(page_html: str) -> List[str]:
    collector = _InlineScriptCollector()
    collector.feed(page_html or "")
    collector.close()
    return collector.scripts


def create_page_session(cookies: Optional[Union[str, Dict[str, str]]] = None) -> requests.Session:
    """Create an HTTP session for watch page requests."""
    session = requests.Session()
    retry_strategy = Retry(
        total=WATCH_PAGE_RETRY_ATTEMPTS,
        backoff_factor=0.6,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({
        "User-Agent": TIMEDTEXT_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml",
        "Accept-Language": "en-US,en;q=0.9",
    })
    if isinstance(cookies, str):
        cookies = cookies_from_header(cookies)
    if cookies:
        session.cookies.update(cookies)
    return session


def load_page_context(url: str, session: Optional[requests.Session] = None) -> Tuple[PageContext, Dict[str, str]]:
    """
    Download ``url`` and build its PageContext.

    Returns:
        (page context, cookies held by the session afterwards)

    Raises:
        PageContextUnavailableError: on transport errors or non-2xx responses
    """
    session = session or create_page_session()
    try:
        resp = session.get(url, timeout=WATCH_PAGE_TIMEOUT)
    except requests.exceptions.RequestException as e:
        evt("watch_page_failed", url=mask_url(url), error=str(e)[:100])
        raise PageContextUnavailableError(f"Could not load {mask_url(url)}: {e}") from e

    if not resp.ok:
        evt("watch_page_failed", url=mask_url(url), status=resp.status_code)
        raise PageContextUnavailableError(f"Could not load {mask_url(url)}: HTTP {resp.status_code}")

    scripts = extract_inline_scripts(resp.text)
    evt("watch_page_loaded", url=mask_url(url), scripts=len(scripts), bytes=len(resp.content))

    page = PageContext(
        url=url.split("#", 1)[0],
        host=urlparse(url).netloc,
        scripts=scripts,
    )
    return page, session.cookies.get_dict()
