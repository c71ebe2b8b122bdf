"""
Tests for session_store.py: in-memory and SQLite stores, flag keys and state loading.
"""

import asyncio
import os
import shutil
import tempfile
import unittest

import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from session_store import (
    InMemorySessionStore, SqliteSessionStore, create_session_store, load_ingestion_state,
    meta_key, uploaded_key, backoff_key, IngestionState,
)

CONTENT_ID = "native:dQw4w9WgXcQ"


class StoreContract:
    """Behaviour shared by every store implementation."""

    def make_store(self):
        raise NotImplementedError

    def test_get_set_delete(self):
        async def run_test():
            store = self.make_store()
            self.assertIsNone(await store.get("missing"))
            await store.set("k", True)
            await store.set("n", {"a": 1})
            got = (await store.get("k"), await store.get("n"))
            await store.delete("k")
            await store.delete("never-set")
            return got, await store.get("k")

        (flag, value), deleted = asyncio.run(run_test())
        self.assertIs(flag, True)
        self.assertEqual(value, {"a": 1})
        self.assertIsNone(deleted)

    def test_clear_removes_everything(self):
        async def run_test():
            store = self.make_store()
            await store.set(meta_key(CONTENT_ID), True)
            await store.set(uploaded_key(CONTENT_ID), True)
            await store.clear()
            return await load_ingestion_state(store, CONTENT_ID)

        self.assertEqual(asyncio.run(run_test()), IngestionState())

    def test_load_ingestion_state(self):
        async def run_test():
            store = self.make_store()
            await store.set(meta_key(CONTENT_ID), True)
            await store.set(backoff_key(CONTENT_ID), True)
            return await load_ingestion_state(store, CONTENT_ID)

        state = asyncio.run(run_test())
        self.assertTrue(state.metadata_registered)
        self.assertFalse(state.uploaded)
        self.assertTrue(state.backoff)


class TestInMemorySessionStore(StoreContract, unittest.TestCase):

    def make_store(self):
        return InMemorySessionStore()

    def test_snapshot(self):
        store = InMemorySessionStore()
        asyncio.run(store.set("a", 1))
        self.assertEqual(store.snapshot(), {"a": 1})


class TestSqliteSessionStore(StoreContract, unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "nested", "session.db")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_store(self):
        return SqliteSessionStore(self.db_path)

    def test_survives_reopen(self):
        asyncio.run(SqliteSessionStore(self.db_path).set(uploaded_key(CONTENT_ID), True))
        reopened = SqliteSessionStore(self.db_path)
        self.assertTrue(asyncio.run(reopened.get(uploaded_key(CONTENT_ID))))


class TestKeysAndFactory(unittest.TestCase):

    def test_keys_are_distinct_per_flag(self):
        self.assertEqual(meta_key("x"), "yt_meta_done:x")
        self.assertEqual(uploaded_key("x"), "yt_fetched:x")
        self.assertEqual(backoff_key("x"), "yt_backoff:x")

    def test_factory(self):
        self.assertIsInstance(create_session_store(None), InMemorySessionStore)
        temp_dir = tempfile.mkdtemp()
        try:
            store = create_session_store(os.path.join(temp_dir, "s.db"))
            self.assertIsInstance(store, SqliteSessionStore)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)


if __name__ == '__main__':
    unittest.main()
