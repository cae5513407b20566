from __future__ import annotations

import logging
import sqlite3

from deckflow.config import Settings
from deckflow.db.base import Database, RunResult, normalize_params
from deckflow.db.blob_store import FileBlobStore
from deckflow.db.memory import MemoryDatabase
from deckflow.db.native import NativeDatabase

logger = logging.getLogger(__name__)

__all__ = [
    "Database",
    "FileBlobStore",
    "MemoryDatabase",
    "NativeDatabase",
    "RunResult",
    "normalize_params",
    "open_database",
]


async def open_database(settings: Settings) -> Database:
    """Open the configured backend. ``auto`` falls back to memory if native fails."""
    backend = settings.storage_backend

    if backend in ("native", "auto"):
        try:
            return await NativeDatabase.open(settings.data_dir / settings.sqlite_filename)
        except (OSError, sqlite3.Error) as e:
            if backend == "native":
                raise
            logger.warning(
                "Native database unavailable (%s); falling back to in-memory backend", e
            )

    return await MemoryDatabase.open(
        FileBlobStore(settings.snapshot_dir),
        snapshot_key=settings.snapshot_key,
        debounce_seconds=settings.save_debounce_seconds,
        timeout=settings.engine_init_timeout,
    )
