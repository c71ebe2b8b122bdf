"""
Command-line runner that loads .env before wiring the ingestion pipeline.

    python run_local.py login --token <access token>
    python run_local.py ingest "https://www.youtube.com/watch?v=<id>" [--cookies "SID=...; HSID=..."]
    python run_local.py vote "<page url>" --time 83 --up
    python run_local.py moments "<page url>" [--no-transcript] [--window 8]
    python run_local.py logout
"""
import argparse
import asyncio
import json
import sys
from urllib.parse import urlparse

from dotenv import load_dotenv

from backend_client import BackendClient
from content_identity import is_youtube_host
from ingest_config import IngestConfig, get_ingest_config
from ingestion_coordinator import IngestionCoordinator
from logging_setup import configure_logging, get_logger
from models import PageContext
from moments import moment_to_dict
from session_store import create_session_store
from timedtext_service import TimedtextService, create_caption_client
from token_manager import TokenManager
from vote_service import VoteService, VOTE_UP, VOTE_DOWN
from watch_page import PageContextUnavailableError, create_page_session, load_page_context

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Timestamp votes and caption ingestion")
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="store a backend access token")
    login.add_argument("--token", required=True)

    sub.add_parser("logout", help="remove the token and reset session state")

    ingest = sub.add_parser("ingest", help="register and upload a YouTube caption track")
    ingest.add_argument("url")
    ingest.add_argument("--cookies", default=None, help="viewer cookie header for caption requests")

    vote = sub.add_parser("vote", help="vote on a moment (triggers ingestion on YouTube)")
    vote.add_argument("url")
    vote.add_argument("--time", type=float, required=True, help="seconds into the video")
    direction = vote.add_mutually_exclusive_group(required=True)
    direction.add_argument("--up", dest="vote", action="store_const", const=VOTE_UP)
    direction.add_argument("--down", dest="vote", action="store_const", const=VOTE_DOWN)
    vote.add_argument("--media-url", default="", help="resolved media URL for non-YouTube pages")
    vote.add_argument("--cookies", default=None)

    moments = sub.add_parser("moments", help="list voted moments with transcript snippets")
    moments.add_argument("url")
    moments.add_argument("--media-url", default="")
    moments.add_argument("--no-transcript", action="store_true")
    moments.add_argument("--window", type=int, default=None)

    return parser


def _page_for(url: str, media_url: str, cookies):
    """YouTube pages are downloaded for their caption metadata; other pages only need the URL."""
    page = PageContext(url=url.split("#", 1)[0], host=urlparse(url).netloc, media_url=media_url)
    if not is_youtube_host(page.host):
        return page, cookies
    page, session_cookies = load_page_context(url, create_page_session(cookies))
    page.media_url = media_url
    return page, cookies or session_cookies


async def _run(args, config: IngestConfig) -> dict:
    store = create_session_store(config.session_db_path)
    tokens = TokenManager(config.token_file, store)

    if args.command == "login":
        tokens.login(args.token)
        return {"ok": True}
    if args.command == "logout":
        await tokens.logout()
        return {"ok": True}

    page, cookies = _page_for(args.url, getattr(args, "media_url", ""), getattr(args, "cookies", None))

    async with BackendClient(config.backend_base_url, config.backend_timeout,
                             config.backend_connect_retries) as backend, \
            create_caption_client(cookies, config.caption_fetch_timeout) as caption_client:
        engine = TimedtextService(caption_client, config.rate_limit_statuses)
        coordinator = IngestionCoordinator(store, backend, engine, tokens)
        service = VoteService(backend, coordinator, tokens,
                              preferred_lang=config.preferred_caption_lang,
                              hash_prefix_len=config.content_hash_prefix_len)

        if args.command == "ingest":
            result = await service.ingest(page)
            if result is None:
                return {"ok": False, "error": "Not a YouTube watch page"}
            return {**result.to_dict(), "message": service.error_handler.handle_result(result)}

        if args.command == "vote":
            result = await service.vote(page, args.time, args.vote)
            return {
                "contentId": result.content_id,
                "ok": result.vote.ok,
                "status": result.vote.status,
                "message": result.message,
                "ingestion": result.ingestion.to_dict() if result.ingestion else None,
            }

        window = args.window if args.window is not None else config.snippet_window_sec
        result = await service.load_moments(page, include_transcript=not args.no_transcript,
                                            limit=config.summary_limit, window_sec=window)
        return {
            "contentId": result.content_id,
            "ok": result.ok,
            "error": result.error,
            "transcript": result.transcript_status,
            "moments": [moment_to_dict(m) for m in result.moments],
        }


def main(argv=None) -> int:
    load_dotenv()
    config = get_ingest_config()
    configure_logging(config.log_level, config.log_json)

    args = build_parser().parse_args(argv)
    try:
        output = asyncio.run(_run(args, config))
    except PageContextUnavailableError as e:
        output = {"ok": False, "error": str(e)}

    print(json.dumps(output, indent=2, ensure_ascii=False, default=str))
    return 0 if output.get("ok") else 1


if __name__ == '__main__':
    sys.exit(main())
