"""
Read an Anki ``.apkg`` package: zip container, embedded collection database
(legacy plain sqlite or zstd-compressed modern), notes and cards.

Everything here is blocking; callers run it through ``asyncio.to_thread``.
"""
from __future__ import annotations

import logging
import shutil
import sqlite3
import tempfile
import zipfile
from collections.abc import Iterator
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from pathlib import Path

import zstandard

from deckflow.errors import InvalidPackage
from deckflow.models.importing import PackageGeneration
from deckflow.services.media import media_references

logger = logging.getLogger(__name__)

MODERN_MEMBER = "collection.anki21b"
# Newer legacy exports use anki21; anki2 is the oldest and also the stub
# that modern packages carry for old clients.
LEGACY_MEMBERS = ("collection.anki21", "collection.anki2")

FIELD_SEPARATOR = "\x1f"
ANSWER_JOINER = "\n\n"
EMPTY_QUESTION = "Empty"

_REQUIRED_TABLES = ("notes", "cards")


@dataclass
class SourceNote:
    id: int
    question: str
    answer: str
    media_files: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SourceCard:
    id: int
    note_id: int
    deck_id: int


@dataclass
class OpenedPackage:
    """An unpacked package. Valid only inside ``open_package``."""

    archive: zipfile.ZipFile
    conn: sqlite3.Connection
    member: str
    generation: PackageGeneration


def split_fields(flds: str | None) -> tuple[str, str]:
    """Field 0 is the question, the remaining fields form the answer."""
    parts = (flds or "").split(FIELD_SEPARATOR)
    question = parts[0] or EMPTY_QUESTION
    answer = ANSWER_JOINER.join(parts[1:])
    return question, answer


def locate_collection(archive: zipfile.ZipFile) -> tuple[str, PackageGeneration]:
    names = set(archive.namelist())
    if MODERN_MEMBER in names:
        return MODERN_MEMBER, PackageGeneration.MODERN
    for member in LEGACY_MEMBERS:
        if member in names:
            return member, PackageGeneration.LEGACY
    raise InvalidPackage("locate", "Package contains no collection database")


def extract_collection(
    archive: zipfile.ZipFile,
    member: str,
    generation: PackageGeneration,
    dest: Path,
) -> Path:
    """Stream the collection member to ``dest``, decompressing modern packages."""
    try:
        with archive.open(member) as src, open(dest, "wb") as out:
            if generation is PackageGeneration.MODERN:
                zstandard.ZstdDecompressor().copy_stream(src, out)
            else:
                shutil.copyfileobj(src, out)
    except (zstandard.ZstdError, zipfile.BadZipFile, OSError, EOFError) as e:
        raise InvalidPackage("decompress", f"Could not extract {member}", e) from e
    logger.debug("Extracted %s (%d bytes)", member, dest.stat().st_size)
    return dest


def open_collection(path: Path) -> sqlite3.Connection:
    """Open the extracted collection read-only and check it has notes and cards."""
    conn = None
    try:
        conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
        found = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    except sqlite3.DatabaseError as e:
        if conn is not None:
            conn.close()
        raise InvalidPackage("open", "Embedded database is not readable", e) from e

    missing = [t for t in _REQUIRED_TABLES if t not in found]
    if missing:
        conn.close()
        raise InvalidPackage("open", f"Embedded database lacks tables: {', '.join(missing)}")
    return conn


@contextmanager
def open_package(path: Path) -> Iterator[OpenedPackage]:
    """Unpack, locate, decompress and open. Temporary files are removed on exit."""
    try:
        archive = zipfile.ZipFile(path)
    except (zipfile.BadZipFile, OSError) as e:
        raise InvalidPackage("unpack", f"{path.name} is not a readable zip archive", e) from e

    with archive, tempfile.TemporaryDirectory(prefix="deckflow-import-") as tmp:
        member, generation = locate_collection(archive)
        logger.info("Package %s: using %s (%s)", path.name, member, generation.value)
        db_path = extract_collection(archive, member, generation, Path(tmp) / "collection.db")
        with closing(open_collection(db_path)) as conn:
            yield OpenedPackage(
                archive=archive, conn=conn, member=member, generation=generation
            )


def read_notes(conn: sqlite3.Connection) -> dict[int, SourceNote]:
    notes: dict[int, SourceNote] = {}
    try:
        rows = conn.execute("SELECT id, flds FROM notes").fetchall()
    except sqlite3.DatabaseError as e:
        raise InvalidPackage("read", "Could not read notes", e) from e
    for note_id, flds in rows:
        question, answer = split_fields(flds)
        notes[note_id] = SourceNote(
            id=note_id,
            question=question,
            answer=answer,
            media_files=media_references(question, answer),
        )
    return notes


def read_cards(conn: sqlite3.Connection) -> list[SourceCard]:
    try:
        rows = conn.execute("SELECT id, nid, did FROM cards ORDER BY id").fetchall()
    except sqlite3.DatabaseError as e:
        raise InvalidPackage("read", "Could not read cards", e) from e
    return [SourceCard(id=cid, note_id=nid, deck_id=did) for cid, nid, did in rows]
