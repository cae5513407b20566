"""
Shared fixtures: both storage backends, a deterministic scheduling oracle,
and a builder that writes .apkg packages on the fly.
"""
from __future__ import annotations

import asyncio
import json
import sqlite3
import zipfile
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
import zstandard

from deckflow.db import MemoryDatabase, NativeDatabase
from deckflow.models.card import CardState, Rating, ReviewLog, SchedulingFields

# ── Blob store ────────────────────────────────────────────────


class MemoryBlobStore:
    def __init__(self, get_delay: float = 0.0) -> None:
        self.blobs: dict[str, bytes] = {}
        self.get_delay = get_delay
        self.set_calls = 0
        self.fail_sets = False

    async def get(self, key: str) -> bytes | None:
        if self.get_delay:
            await asyncio.sleep(self.get_delay)
        return self.blobs.get(key)

    async def set(self, key: str, data: bytes) -> None:
        if self.fail_sets:
            raise OSError("disk full")
        self.set_calls += 1
        self.blobs[key] = data


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


# ── Databases ─────────────────────────────────────────────────


@pytest_asyncio.fixture
async def native_db(tmp_path):
    db = await NativeDatabase.open(tmp_path / "store" / "deckflow.db")
    yield db
    await db.close()


@pytest_asyncio.fixture
async def memory_db(blob_store):
    db = await MemoryDatabase.open(
        blob_store, snapshot_key="test_db", debounce_seconds=0.05, timeout=5.0
    )
    yield db
    await db.close()


@pytest_asyncio.fixture(params=["native", "memory"])
async def db(request, tmp_path):
    if request.param == "native":
        database = await NativeDatabase.open(tmp_path / "store" / "deckflow.db")
    else:
        database = await MemoryDatabase.open(
            MemoryBlobStore(), snapshot_key="test_db", debounce_seconds=0.05, timeout=5.0
        )
    yield database
    await database.close()


# ── Scheduling oracle ─────────────────────────────────────────

FAKE_INTERVALS = {
    Rating.AGAIN: timedelta(minutes=10),
    Rating.HARD: timedelta(minutes=30),
    Rating.GOOD: timedelta(days=1),
    Rating.EASY: timedelta(days=4),
}


class FakeOracle:
    """Fixed intervals per rating; records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[SchedulingFields, Rating, datetime]] = []

    def __call__(self, fields, rating, now):
        self.calls.append((fields, rating, now))
        interval = FAKE_INTERVALS[rating]
        days = interval.total_seconds() / 86400.0
        lapses = fields.lapses + (1 if rating is Rating.AGAIN and fields.state is CardState.REVIEW else 0)
        next_fields = SchedulingFields(
            state=CardState.REVIEW if days >= 1 else CardState.LEARNING,
            due=now + interval,
            stability=fields.stability + days,
            difficulty=5.0,
            elapsed_days=0.0,
            scheduled_days=days,
            reps=fields.reps + 1,
            lapses=lapses,
            last_review=now,
        )
        log = ReviewLog(
            rating=rating,
            state=fields.state,
            due=fields.due,
            stability=fields.stability,
            difficulty=fields.difficulty,
            elapsed_days=0.0,
            scheduled_days=days,
            review=now,
        )
        return next_fields, log


@pytest.fixture
def oracle():
    return FakeOracle()


# ── .apkg builder ─────────────────────────────────────────────

LEGACY_STUB_QUESTION = "Please update to the latest Anki version, then import the .colpkg/.apkg file again."


def write_collection(
    path: Path,
    *,
    deck_schema: str = "decks_table",
    decks: Sequence[tuple[int, str]] = (),
    notes: Sequence[tuple[int, str]] = (),
    cards: Sequence[tuple[int, int, int]] = (),
    col_decks: str | None = None,
    tables: tuple[str, ...] = ("col", "notes", "cards"),
) -> Path:
    """Write an embedded collection database the way Anki lays it out (subset)."""
    path.unlink(missing_ok=True)
    conn = sqlite3.connect(path)
    try:
        if "col" in tables:
            conn.execute("CREATE TABLE col (id INTEGER PRIMARY KEY, decks TEXT NOT NULL)")
        if "notes" in tables:
            conn.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, flds TEXT NOT NULL)")
        if "cards" in tables:
            conn.execute(
                "CREATE TABLE cards (id INTEGER PRIMARY KEY, nid INTEGER NOT NULL, did INTEGER NOT NULL)"
            )

        if deck_schema == "decks_table":
            conn.execute("CREATE TABLE decks (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
            conn.executemany("INSERT INTO decks (id, name) VALUES (?, ?)", list(decks))
            blob = ""
        elif deck_schema == "col_json":
            blob = json.dumps({str(i): {"id": i, "name": n} for i, n in decks})
        else:
            blob = "{}"
        if col_decks is not None:
            blob = col_decks
        if "col" in tables:
            conn.execute("INSERT INTO col (id, decks) VALUES (1, ?)", (blob,))

        if "notes" in tables:
            conn.executemany("INSERT INTO notes (id, flds) VALUES (?, ?)", list(notes))
        if "cards" in tables:
            conn.executemany("INSERT INTO cards (id, nid, did) VALUES (?, ?, ?)", list(cards))
        conn.commit()
    finally:
        conn.close()
    return path


def build_apkg(
    directory: Path,
    name: str = "Spanish.apkg",
    *,
    generation: str = "legacy",
    media: dict[str, tuple[str, bytes]] | None = None,
    manifest_raw: bytes | None = None,
    modern_payload: bytes | None = None,
    include_collection: bool = True,
    **collection,
) -> Path:
    """Build a package. ``media`` maps zip entry -> (filename, content)."""
    directory.mkdir(parents=True, exist_ok=True)
    db_path = write_collection(directory / f"{name}.collection", **collection)
    apkg = directory / name

    with zipfile.ZipFile(apkg, "w") as zf:
        if include_collection and generation == "legacy":
            zf.write(db_path, "collection.anki2")
        elif include_collection:
            payload = modern_payload
            if payload is None:
                payload = zstandard.ZstdCompressor().compress(db_path.read_bytes())
            zf.writestr("collection.anki21b", payload)
            stub = write_collection(
                directory / f"{name}.stub",
                decks=[(1, "Default")],
                notes=[(1, LEGACY_STUB_QUESTION)],
                cards=[(1, 1, 1)],
            )
            zf.write(stub, "collection.anki2")

        if manifest_raw is not None:
            zf.writestr("media", manifest_raw)
        elif media:
            zf.writestr("media", json.dumps({entry: fn for entry, (fn, _) in media.items()}))
        for entry, (_, content) in (media or {}).items():
            zf.writestr(entry, content)
    return apkg


@pytest.fixture
def apkg_dir(tmp_path):
    return tmp_path / "packages"


SPANISH = dict(
    decks=[(1, "Default"), (1700000000001, "Spanish::Verbs"), (1700000000002, "Spanish::Nouns")],
    notes=[
        (10, "hablar\x1fto speak"),
        (11, "comer\x1fto eat\x1f[sound:comer.mp3]"),
        (12, "la casa\x1fthe house"),
    ],
    cards=[(100, 10, 1700000000001), (101, 11, 1700000000001), (102, 12, 1700000000002)],
)


@pytest.fixture
def spanish():
    return dict(SPANISH)


@pytest.fixture
def make_apkg(apkg_dir):
    def _make(name: str = "Spanish.apkg", **kwargs) -> Path:
        return build_apkg(apkg_dir, name, **kwargs)

    return _make


@pytest.fixture
def make_collection(tmp_path):
    def _make(name: str = "collection.db", **kwargs) -> sqlite3.Connection:
        path = write_collection(tmp_path / name, **kwargs)
        return sqlite3.connect(path)

    return _make
