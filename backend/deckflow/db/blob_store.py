from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class BlobStore(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, data: bytes) -> None: ...


class FileBlobStore:
    """Key-value blob store: one file per key inside ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.directory / f"{key}.bin"

    async def get(self, key: str) -> bytes | None:
        path = self._path(key)

        def _read() -> bytes | None:
            try:
                return path.read_bytes()
            except FileNotFoundError:
                return None

        return await asyncio.to_thread(_read)

    async def set(self, key: str, data: bytes) -> None:
        path = self._path(key)

        def _write() -> None:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, path)

        await asyncio.to_thread(_write)
        logger.debug("Stored blob %s (%d bytes)", key, len(data))
