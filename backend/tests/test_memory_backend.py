"""
Tests for the in-memory backend: debounced snapshots, flush, restore,
bounded initialization, and backend selection in open_database.
"""
import asyncio
import sqlite3

import pytest

from conftest import MemoryBlobStore
from deckflow.config import Settings
from deckflow.db import MemoryDatabase, NativeDatabase, open_database
from deckflow.errors import StorageEngineError, StorageEngineInitTimeout


async def _open(store, **kwargs):
    kwargs.setdefault("debounce_seconds", 0.05)
    return await MemoryDatabase.open(store, snapshot_key="test_db", timeout=5.0, **kwargs)


@pytest.mark.asyncio
class TestDebouncedSave:
    async def test_burst_of_writes_saves_once(self, blob_store):
        db = await _open(blob_store, debounce_seconds=0.3)
        try:
            await db.flush()
            before = blob_store.set_calls

            for i in range(10):
                await db.run("INSERT INTO decks (name) VALUES (?)", f"d{i}")
            assert db.save_pending
            assert blob_store.set_calls == before

            snapshots = db.snapshot_count
            await asyncio.sleep(0.8)
            assert blob_store.set_calls == before + 1
            assert db.snapshot_count == snapshots + 1
            assert not db.save_pending
        finally:
            await db.close()

    async def test_flush_saves_immediately(self, memory_db, blob_store):
        await memory_db.run("INSERT INTO decks (name) VALUES ('now')")
        await memory_db.flush()
        assert not memory_db.save_pending
        assert "test_db" in blob_store.blobs

    async def test_reads_do_not_schedule_saves(self, memory_db, blob_store):
        await memory_db.flush()
        await memory_db.get_all("SELECT * FROM decks")
        assert not memory_db.save_pending

    async def test_no_snapshot_while_transaction_open(self, blob_store):
        db = await _open(blob_store, debounce_seconds=0.01)
        try:
            await db.flush()
            before = blob_store.set_calls
            async with db.transaction():
                await db.run("INSERT INTO decks (name) VALUES ('tx')")
                await asyncio.sleep(0.1)
                assert blob_store.set_calls == before
            await asyncio.sleep(0.1)
            assert blob_store.set_calls == before + 1
        finally:
            await db.close()

    async def test_failed_save_keeps_changes_pending(self, memory_db, blob_store):
        await memory_db.run("INSERT INTO decks (name) VALUES ('x')")
        blob_store.fail_sets = True
        with pytest.raises(OSError):
            await memory_db.flush()

        blob_store.fail_sets = False
        await memory_db.flush()
        assert "test_db" in blob_store.blobs


@pytest.mark.asyncio
class TestRestore:
    async def test_reopen_restores_snapshot(self, blob_store):
        first = await _open(blob_store)
        await first.run("INSERT INTO decks (name, original_id) VALUES ('Verbs', 9)")
        await first.close()

        second = await _open(blob_store)
        try:
            row = await second.get_first("SELECT name FROM decks WHERE original_id = 9")
        finally:
            await second.close()
        assert row == {"name": "Verbs"}

    async def test_starts_empty_without_snapshot(self, memory_db):
        assert await memory_db.get_all("SELECT * FROM decks") == []
        assert memory_db.init_stage == "ready"

    async def test_corrupt_snapshot_fails_with_stage(self):
        store = MemoryBlobStore()
        store.blobs["test_db"] = b"this is not a database" * 100
        with pytest.raises(StorageEngineError) as exc_info:
            await _open(store)
        assert exc_info.value.stage in ("restore", "migrate")


@pytest.mark.asyncio
class TestInitTimeout:
    async def test_slow_restore_times_out_naming_the_stage(self):
        store = MemoryBlobStore(get_delay=1.0)
        with pytest.raises(StorageEngineInitTimeout) as exc_info:
            await MemoryDatabase.open(store, snapshot_key="test_db", timeout=0.05)
        assert exc_info.value.stage == "restore"

    async def test_timeout_is_a_storage_engine_error(self):
        store = MemoryBlobStore(get_delay=1.0)
        with pytest.raises(StorageEngineError):
            await MemoryDatabase.open(store, snapshot_key="test_db", timeout=0.05)


@pytest.mark.asyncio
class TestOpenDatabase:
    async def test_native_by_default(self, tmp_path):
        db = await open_database(Settings(data_dir=tmp_path, storage_backend="auto"))
        try:
            assert isinstance(db, NativeDatabase)
            assert (tmp_path / "deckflow.db").exists()
        finally:
            await db.close()

    async def test_auto_falls_back_to_memory(self, tmp_path):
        # a directory where the database file should be makes sqlite fail to open
        (tmp_path / "deckflow.db").mkdir()
        db = await open_database(Settings(data_dir=tmp_path, storage_backend="auto"))
        try:
            assert isinstance(db, MemoryDatabase)
            await db.run("INSERT INTO decks (name) VALUES ('fallback')")
        finally:
            await db.close()
        assert (tmp_path / "snapshots" / "deckflow_db.bin").exists()

    async def test_native_failure_is_not_masked(self, tmp_path):
        (tmp_path / "deckflow.db").mkdir()
        with pytest.raises(sqlite3.Error):
            await open_database(Settings(data_dir=tmp_path, storage_backend="native"))

    async def test_memory_backend_explicitly(self, tmp_path):
        db = await open_database(
            Settings(data_dir=tmp_path, storage_backend="memory", save_debounce_seconds=0.01)
        )
        try:
            assert db.backend_name == "memory"
        finally:
            await db.close()
        assert not (tmp_path / "deckflow.db").exists()
