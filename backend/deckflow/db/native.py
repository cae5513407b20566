"""On-device backend: one sqlite file driven through aiosqlite."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import aiosqlite

from deckflow.db.base import Database, Params, RunResult, normalize_params
from deckflow.db.schema import apply_schema

logger = logging.getLogger(__name__)


class NativeDatabase(Database):
    backend_name = "native"

    def __init__(self, conn: aiosqlite.Connection, path: Path) -> None:
        super().__init__()
        self._conn = conn
        self.path = path

    @classmethod
    async def open(cls, path: Path) -> NativeDatabase:
        """Open (or create) the database file and migrate it."""
        path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: transactions are issued explicitly by transaction()
        conn = await aiosqlite.connect(path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        db = cls(conn, path)
        try:
            await conn.execute("PRAGMA foreign_keys=ON")
            await apply_schema(db)
        except BaseException:
            await conn.close()
            raise
        logger.info("Opened native database at %s", path)
        return db

    async def exec(self, sql: str) -> None:
        async with self._statement():
            await self._conn.executescript(sql)

    async def run(self, sql: str, params: Params = None) -> RunResult:
        async with self._statement():
            async with self._conn.execute(sql, normalize_params(params)) as cursor:
                return RunResult(changes=cursor.rowcount, last_insert_rowid=cursor.lastrowid)

    async def get_all(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        async with self._statement():
            async with self._conn.execute(sql, normalize_params(params)) as cursor:
                rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    async def get_first(self, sql: str, params: Params = None) -> dict[str, Any] | None:
        async with self._statement():
            async with self._conn.execute(sql, normalize_params(params)) as cursor:
                row = await cursor.fetchone()
        return dict(row) if row is not None else None

    async def close(self) -> None:
        await self._conn.close()
        logger.info("Closed native database at %s", self.path)

    async def _control(self, sql: str) -> None:
        await self._conn.execute(sql)

    async def _engine_in_transaction(self) -> bool:
        return self._conn.in_transaction
