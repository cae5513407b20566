"""
In-memory backend for environments without a usable on-disk database.

The engine is an in-memory sqlite connection driven from worker threads.
Its contents are snapshotted (``Connection.serialize``) to a blob store on a
trailing debounce: every write reschedules one timer, so a burst of writes
produces a single save. ``flush()`` saves immediately.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from typing import Any, TypeVar

from deckflow.db.base import Database, Params, RunResult, normalize_params
from deckflow.db.blob_store import BlobStore
from deckflow.db.schema import apply_schema
from deckflow.errors import StorageEngineError, StorageEngineInitTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialize()/deserialize() landed in Python 3.11 and need sqlite >= 3.23
_MIN_SQLITE = (3, 23, 0)


def _connect_memory() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


class MemoryDatabase(Database):
    backend_name = "memory"

    def __init__(
        self,
        blob_store: BlobStore,
        snapshot_key: str,
        debounce_seconds: float = 1.0,
    ) -> None:
        super().__init__()
        self._blob_store = blob_store
        self._snapshot_key = snapshot_key
        self._debounce = debounce_seconds
        self._conn: sqlite3.Connection | None = None
        self._engine_lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()
        self._save_handle: asyncio.TimerHandle | None = None
        self._save_tasks: set[asyncio.Task[None]] = set()
        self._dirty = False
        self.init_stage = "pending"
        self.snapshot_count = 0

    @classmethod
    async def open(
        cls,
        blob_store: BlobStore,
        *,
        snapshot_key: str,
        debounce_seconds: float = 1.0,
        timeout: float = 10.0,
    ) -> MemoryDatabase:
        """Initialize the engine within ``timeout`` seconds or fail fast."""
        db = cls(blob_store, snapshot_key, debounce_seconds)
        try:
            await asyncio.wait_for(db._initialize(), timeout=timeout)
        except TimeoutError as e:
            db._discard()
            raise StorageEngineInitTimeout(
                db.init_stage,
                f"In-memory engine did not initialize within {timeout:.1f}s",
            ) from e
        except StorageEngineError:
            db._discard()
            raise
        logger.info("In-memory database ready (snapshot key %r)", snapshot_key)
        return db

    async def _initialize(self) -> None:
        self.init_stage = "probe"
        if not hasattr(sqlite3.Connection, "serialize") or sqlite3.sqlite_version_info < _MIN_SQLITE:
            raise StorageEngineError(
                "probe",
                f"sqlite {sqlite3.sqlite_version} lacks serialize/deserialize support",
            )

        self.init_stage = "open"
        try:
            self._conn = await asyncio.to_thread(_connect_memory)
        except sqlite3.Error as e:
            raise StorageEngineError("open", "Could not create in-memory database", e) from e

        self.init_stage = "restore"
        try:
            snapshot = await self._blob_store.get(self._snapshot_key)
        except OSError as e:
            raise StorageEngineError("restore", "Could not read snapshot", e) from e
        if snapshot:
            try:
                await asyncio.to_thread(self._conn.deserialize, snapshot)
            except sqlite3.Error as e:
                raise StorageEngineError("restore", "Snapshot could not be loaded", e) from e
            logger.info("Restored snapshot %r (%d bytes)", self._snapshot_key, len(snapshot))
        else:
            logger.info("No snapshot under %r, starting empty", self._snapshot_key)

        self.init_stage = "migrate"
        try:
            await self._call(self._conn.execute, "PRAGMA foreign_keys=ON")
            await apply_schema(self)
        except sqlite3.Error as e:
            raise StorageEngineError("migrate", "Schema could not be applied", e) from e
        self.init_stage = "ready"

    def _discard(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # --- Statement API ---

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        async with self._engine_lock:
            return await asyncio.to_thread(fn, *args)

    @property
    def _engine(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Cannot operate on a closed database.")
        return self._conn

    async def exec(self, sql: str) -> None:
        async with self._statement():
            await self._call(self._engine.executescript, sql)
        self._schedule_save()

    async def run(self, sql: str, params: Params = None) -> RunResult:
        conn = self._engine
        bound = normalize_params(params)

        def _run() -> RunResult:
            cursor = conn.execute(sql, bound)
            try:
                return RunResult(changes=cursor.rowcount, last_insert_rowid=cursor.lastrowid)
            finally:
                cursor.close()

        async with self._statement():
            result = await self._call(_run)
        self._schedule_save()
        return result

    async def get_all(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        conn = self._engine
        bound = normalize_params(params)

        def _fetch() -> list[dict[str, Any]]:
            return [dict(r) for r in conn.execute(sql, bound).fetchall()]

        async with self._statement():
            return await self._call(_fetch)

    async def get_first(self, sql: str, params: Params = None) -> dict[str, Any] | None:
        conn = self._engine
        bound = normalize_params(params)

        def _fetch() -> dict[str, Any] | None:
            row = conn.execute(sql, bound).fetchone()
            return dict(row) if row is not None else None

        async with self._statement():
            return await self._call(_fetch)

    async def _control(self, sql: str) -> None:
        await self._call(self._engine.execute, sql)

    async def _engine_in_transaction(self) -> bool:
        async with self._engine_lock:
            return self._engine.in_transaction

    async def _after_commit(self) -> None:
        if self._dirty:
            self._schedule_save()

    # --- Snapshots ---

    def _schedule_save(self) -> None:
        """Trailing debounce: cancel any pending save and start a new window."""
        self._dirty = True
        if self.in_transaction:
            # rescheduled by _after_commit once the transaction commits
            return
        if self._save_handle is not None:
            self._save_handle.cancel()
        loop = asyncio.get_running_loop()
        self._save_handle = loop.call_later(self._debounce, self._fire_save)

    def _fire_save(self) -> None:
        self._save_handle = None
        task = asyncio.get_running_loop().create_task(self.save(), name="snapshot-save")
        self._save_tasks.add(task)
        task.add_done_callback(self._save_done)

    def _save_done(self, task: asyncio.Task[None]) -> None:
        self._save_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Snapshot save failed: %s", task.exception())

    @property
    def save_pending(self) -> bool:
        return self._save_handle is not None

    async def save(self) -> None:
        """Serialize the database into the blob store if anything changed."""
        async with self._save_lock:
            if self._conn is None or self.in_transaction or not self._dirty:
                return
            self._dirty = False
            data = await self._call(self._conn.serialize)
            try:
                await self._blob_store.set(self._snapshot_key, data)
            except BaseException:
                self._dirty = True
                raise
            self.snapshot_count += 1
            logger.debug("Saved snapshot %r (%d bytes)", self._snapshot_key, len(data))

    async def flush(self) -> None:
        if self._save_handle is not None:
            self._save_handle.cancel()
            self._save_handle = None
        await self.save()

    async def close(self) -> None:
        if self._conn is None:
            return
        await self.flush()
        if self._save_tasks:
            await asyncio.wait(self._save_tasks)
        conn, self._conn = self._conn, None
        await asyncio.to_thread(conn.close)
        logger.info("Closed in-memory database")
