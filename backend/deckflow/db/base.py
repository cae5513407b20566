"""
Backend-neutral storage interface.

Both backends expose the same statement operations (exec, run, get_all,
get_first, transaction) plus ``flush`` and ``close``. Engine errors
(``sqlite3.Error``) are never wrapped.
"""
from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# None, a scalar, a sequence, or a mapping for named placeholders
Params = Any


@dataclass(frozen=True)
class RunResult:
    changes: int
    last_insert_rowid: int | None


def normalize_params(params: Params) -> tuple[Any, ...] | Mapping[str, Any]:
    """Turn None / a scalar / a sequence into something sqlite3 can bind."""
    if params is None:
        return ()
    if isinstance(params, Mapping):
        return params
    if isinstance(params, (str, bytes, bytearray, memoryview)):
        return (params,)
    if isinstance(params, Sequence):
        return tuple(params)
    return (params,)


class Database(abc.ABC):
    backend_name: str = "abstract"

    def __init__(self) -> None:
        self._tx_lock = asyncio.Lock()
        self._tx_owner: asyncio.Task[Any] | None = None

    # --- Statement API ---

    @abc.abstractmethod
    async def exec(self, sql: str) -> None:
        """Run a non-parameterized batch of statements.

        Not for use inside ``transaction()``: sqlite commits any open
        transaction before running a script.
        """

    @abc.abstractmethod
    async def run(self, sql: str, params: Params = None) -> RunResult:
        """Run one parameterized mutating statement."""

    @abc.abstractmethod
    async def get_all(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def get_first(self, sql: str, params: Params = None) -> dict[str, Any] | None:
        ...

    async def flush(self) -> None:
        """Persist pending state now. Only meaningful for snapshotting backends."""

    @abc.abstractmethod
    async def close(self) -> None:
        ...

    # --- Transactions ---

    @property
    def in_transaction(self) -> bool:
        return self._tx_owner is not None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """BEGIN on enter, COMMIT on success, ROLLBACK and re-raise on error.

        A nested call from the task that owns the open transaction joins it.
        Statements issued by other tasks wait until it finishes.
        """
        if self._tx_owner is not None and self._tx_owner is asyncio.current_task():
            yield
            return

        async with self._tx_lock:
            self._tx_owner = asyncio.current_task()
            try:
                await self._control("BEGIN")
                try:
                    yield
                    await self._control("COMMIT")
                except BaseException:
                    await self._rollback()
                    raise
            finally:
                self._tx_owner = None
        await self._after_commit()

    @asynccontextmanager
    async def _statement(self) -> AsyncIterator[None]:
        """Hold back statements from other tasks while a transaction is open."""
        owner = self._tx_owner
        if owner is None or owner is asyncio.current_task():
            yield
            return
        async with self._tx_lock:
            yield

    @abc.abstractmethod
    async def _control(self, sql: str) -> None:
        """Execute BEGIN / COMMIT / ROLLBACK on the engine."""

    @abc.abstractmethod
    async def _engine_in_transaction(self) -> bool:
        ...

    async def _rollback(self) -> None:
        # sqlite may already have rolled back on its own (e.g. after SQLITE_FULL)
        if await self._engine_in_transaction():
            await self._control("ROLLBACK")
        else:
            logger.warning("Transaction already closed by the engine; nothing to roll back")

    async def _after_commit(self) -> None:
        """Hook for backends that react to committed writes."""
