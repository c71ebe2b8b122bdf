"""
Session-scoped key/value state for ingestion flags.

Two implementations share one async interface:
- InMemorySessionStore: lives as long as the process
- SqliteSessionStore: survives restarts until the session is reset (logout)

Every write is a single-key write, so an interrupted pipeline can leave
``meta_done`` set without ``uploaded`` but never a half-written flag.
"""

import asyncio
import json
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from logging_setup import get_logger

logger = get_logger(__name__)

META_DONE_PREFIX = "yt_meta_done"
UPLOADED_PREFIX = "yt_fetched"
BACKOFF_PREFIX = "yt_backoff"


def meta_key(content_id: str) -> str:
    return f"{META_DONE_PREFIX}:{content_id}"


def uploaded_key(content_id: str) -> str:
    return f"{UPLOADED_PREFIX}:{content_id}"


def backoff_key(content_id: str) -> str:
    return f"{BACKOFF_PREFIX}:{content_id}"


class SessionStore:
    """Async key/value interface; subclasses implement the four operations."""

    async def get(self, key: str) -> Any:
        raise NotImplementedError

    async def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):

    def __init__(self):
        self._data: Dict[str, Any] = {}

    async def get(self, key: str) -> Any:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._data)


class SqliteSessionStore(SessionStore):
    """SQLite-backed store; blocking calls run in a worker thread."""

    def __init__(self, db_path: str):
        self.db_path = os.path.expanduser(db_path)
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._init_database()
        logger.info(f"SqliteSessionStore initialized at {self.db_path}")

    def _init_database(self):
        with self._get_db_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS session_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

    @contextmanager
    def _get_db_connection(self):
        """Get database connection with commit/rollback handling"""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path)
            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Session store database error: {e}")
            raise
        finally:
            if conn:
                conn.close()

    def _get_sync(self, key: str) -> Any:
        with self._get_db_connection() as conn:
            row = conn.execute("SELECT value FROM session_state WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else None

    def _set_sync(self, key: str, value: Any) -> None:
        with self._get_db_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO session_state (key, value, updated_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), datetime.now().isoformat()),
            )

    def _delete_sync(self, key: str) -> None:
        with self._get_db_connection() as conn:
            conn.execute("DELETE FROM session_state WHERE key = ?", (key,))

    def _clear_sync(self) -> None:
        with self._get_db_connection() as conn:
            conn.execute("DELETE FROM session_state")

    async def get(self, key: str) -> Any:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._set_sync, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear_sync)
        logger.info("Session state cleared")


def create_session_store(db_path: Optional[str] = None) -> SessionStore:
    """SQLite store when a path is configured, in-memory otherwise."""
    if db_path:
        return SqliteSessionStore(db_path)
    return InMemorySessionStore()


@dataclass
class IngestionState:
    """Snapshot of the three sticky per-content flags."""
    metadata_registered: bool = False
    uploaded: bool = False
    backoff: bool = False


async def load_ingestion_state(store: SessionStore, content_id: str) -> IngestionState:
    return IngestionState(
        metadata_registered=bool(await store.get(meta_key(content_id))),
        uploaded=bool(await store.get(uploaded_key(content_id))),
        backoff=bool(await store.get(backoff_key(content_id))),
    )
