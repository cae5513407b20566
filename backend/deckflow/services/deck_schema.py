"""
Deck schema detection for embedded collection databases.

Newer collections keep decks in a ``decks`` table, older ones as a JSON
object in ``col.decks``. When neither yields anything, cards go to one
synthetic deck named after the package.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import ClassVar

from deckflow.models.importing import DeckSchemaKind

logger = logging.getLogger(__name__)

HIERARCHY_SEPARATOR = "\x1f"
DISPLAY_SEPARATOR = "::"


@dataclass(frozen=True)
class SourceDeck:
    original_id: int | None
    name: str


def _deck_name(name: object, deck_id: int) -> str:
    text = str(name or "").replace(HIERARCHY_SEPARATOR, DISPLAY_SEPARATOR).strip()
    return text or f"Deck {deck_id}"


@dataclass(frozen=True)
class NewSchemaDecks:
    rows: tuple[tuple[int, str], ...]
    kind: ClassVar[DeckSchemaKind] = DeckSchemaKind.DECKS_TABLE

    def source_decks(self, package_name: str) -> list[SourceDeck]:
        return [SourceDeck(deck_id, _deck_name(name, deck_id)) for deck_id, name in self.rows]


@dataclass(frozen=True)
class LegacyJsonDecks:
    entries: tuple[tuple[int, str], ...]
    kind: ClassVar[DeckSchemaKind] = DeckSchemaKind.COL_JSON

    def source_decks(self, package_name: str) -> list[SourceDeck]:
        return [SourceDeck(deck_id, _deck_name(name, deck_id)) for deck_id, name in self.entries]


@dataclass(frozen=True)
class FallbackDeck:
    reason: str = "no deck metadata"
    kind: ClassVar[DeckSchemaKind] = DeckSchemaKind.FALLBACK

    def source_decks(self, package_name: str) -> list[SourceDeck]:
        return [SourceDeck(None, package_name.strip() or "Imported deck")]


DeckSchema = NewSchemaDecks | LegacyJsonDecks | FallbackDeck


def _probe_decks_table(conn: sqlite3.Connection) -> NewSchemaDecks | None:
    exists = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'decks'"
    ).fetchone()
    if not exists:
        return None
    rows = conn.execute("SELECT id, name FROM decks ORDER BY id").fetchall()
    if not rows:
        return None
    return NewSchemaDecks(rows=tuple((int(r[0]), r[1]) for r in rows))


def _probe_col_json(conn: sqlite3.Connection) -> LegacyJsonDecks | None:
    row = conn.execute("SELECT decks FROM col LIMIT 1").fetchone()
    if not row or not row[0]:
        return None
    data = json.loads(row[0])
    if not isinstance(data, dict) or not data:
        return None
    entries = []
    for key, deck in data.items():
        deck_id = int(deck.get("id", key))
        entries.append((deck_id, deck.get("name")))
    entries.sort(key=lambda e: e[0])
    return LegacyJsonDecks(entries=tuple(entries))


def detect_deck_schema(conn: sqlite3.Connection) -> DeckSchema:
    """Probe the decks table, then col.decks. Failures fall through, never raise."""
    errors: list[str] = []
    for probe in (_probe_decks_table, _probe_col_json):
        try:
            found = probe(conn)
        except (sqlite3.Error, ValueError, TypeError, AttributeError) as e:
            logger.warning("Deck schema probe %s failed: %s", probe.__name__, e)
            errors.append(f"{probe.__name__}: {e}")
            continue
        if found is not None:
            logger.debug("Deck schema detected: %s", found.kind.value)
            return found

    reason = "; ".join(errors) or "no deck metadata"
    logger.info("No usable deck metadata, using fallback deck (%s)", reason)
    return FallbackDeck(reason=reason)
