"""Deck / card / review-log statements shared by the importer, the study engine and the routers."""
from __future__ import annotations

import json
from datetime import datetime, timezone

from deckflow.db.base import Database
from deckflow.models.card import Card, CardState, ReviewLog, SchedulingFields
from deckflow.models.deck import Deck, DeckSummary


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_time(value: datetime) -> str:
    # Fixed width so that string comparison in SQL orders instants correctly
    return as_utc(value).isoformat(timespec="microseconds")


def _row_to_card(row: dict) -> Card:
    return Card(**row)


# --- Decks ---


async def get_deck(db: Database, deck_id: int) -> Deck | None:
    row = await db.get_first("SELECT * FROM decks WHERE id = ?", deck_id)
    return Deck(**row) if row else None


async def find_deck_by_original_id(db: Database, original_id: int) -> Deck | None:
    row = await db.get_first("SELECT * FROM decks WHERE original_id = ?", original_id)
    return Deck(**row) if row else None


async def find_unlinked_deck(db: Database, name: str) -> Deck | None:
    """A deck with no source id (synthetic fallback deck) matched by name."""
    row = await db.get_first(
        "SELECT * FROM decks WHERE original_id IS NULL AND name = ? ORDER BY id LIMIT 1",
        name,
    )
    return Deck(**row) if row else None


async def insert_deck(db: Database, name: str, original_id: int | None) -> Deck:
    result = await db.run(
        "INSERT INTO decks (original_id, name) VALUES (?, ?)", (original_id, name)
    )
    deck = await get_deck(db, result.last_insert_rowid)
    assert deck is not None
    return deck


async def list_decks(db: Database, now: datetime | None = None) -> list[DeckSummary]:
    """All decks with total and due card counts, by name."""
    rows = await db.get_all(
        """SELECT d.*,
                  COUNT(c.id) AS total_cards,
                  COALESCE(SUM(CASE WHEN c.state = ? OR c.due <= ? THEN 1 ELSE 0 END), 0)
                      AS due_cards
           FROM decks d
           LEFT JOIN cards c ON c.deck_id = d.id
           GROUP BY d.id
           ORDER BY d.name, d.id""",
        (int(CardState.NEW), to_db_time(now or utcnow())),
    )
    return [DeckSummary(**r) for r in rows]


async def delete_deck(db: Database, deck_id: int) -> bool:
    async with db.transaction():
        await db.run("DELETE FROM cards WHERE deck_id = ?", deck_id)
        result = await db.run("DELETE FROM decks WHERE id = ?", deck_id)
    return result.changes > 0


# --- Cards ---


async def insert_card(
    db: Database,
    deck_id: int,
    original_id: int | None,
    question: str,
    answer: str,
    media_files: list[str],
    due: datetime,
) -> int:
    result = await db.run(
        """INSERT INTO cards (deck_id, original_id, question, answer, media_files, state, due)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            deck_id,
            original_id,
            question,
            answer,
            json.dumps(media_files),
            int(CardState.NEW),
            to_db_time(due),
        ),
    )
    return result.last_insert_rowid


async def find_card_id(db: Database, deck_id: int, original_id: int) -> int | None:
    row = await db.get_first(
        "SELECT id FROM cards WHERE deck_id = ? AND original_id = ? ORDER BY id LIMIT 1",
        (deck_id, original_id),
    )
    return row["id"] if row else None


async def update_card_content(
    db: Database, card_id: int, question: str, answer: str, media_files: list[str]
) -> None:
    """Refresh content only; scheduling progress is left untouched."""
    await db.run(
        "UPDATE cards SET question = ?, answer = ?, media_files = ? WHERE id = ?",
        (question, answer, json.dumps(media_files), card_id),
    )


async def get_card(db: Database, card_id: int) -> Card | None:
    row = await db.get_first("SELECT * FROM cards WHERE id = ?", card_id)
    return _row_to_card(row) if row else None


async def list_cards(db: Database, deck_id: int) -> list[Card]:
    rows = await db.get_all("SELECT * FROM cards WHERE deck_id = ? ORDER BY id", deck_id)
    return [_row_to_card(r) for r in rows]


async def get_due_cards(
    db: Database, deck_id: int, now: datetime, limit: int
) -> list[Card]:
    """Cards of a deck that are new or whose due instant has passed, oldest due first."""
    rows = await db.get_all(
        """SELECT * FROM cards
           WHERE deck_id = ? AND (state = ? OR due <= ?)
           ORDER BY due ASC, id ASC
           LIMIT ?""",
        (deck_id, int(CardState.NEW), to_db_time(now), limit),
    )
    return [_row_to_card(r) for r in rows]


async def update_card_scheduling(
    db: Database, card_id: int, fields: SchedulingFields, reviewed_at: datetime
) -> None:
    result = await db.run(
        """UPDATE cards
           SET state = ?, due = ?, stability = ?, difficulty = ?,
               elapsed_days = ?, scheduled_days = ?, reps = ?, lapses = ?,
               last_review = ?
           WHERE id = ?""",
        (
            int(fields.state),
            to_db_time(fields.due),
            fields.stability,
            fields.difficulty,
            fields.elapsed_days,
            fields.scheduled_days,
            fields.reps,
            fields.lapses,
            to_db_time(reviewed_at),
            card_id,
        ),
    )
    if result.changes == 0:
        raise LookupError(f"Card {card_id} no longer exists")


async def insert_review_log(db: Database, card_id: int, log: ReviewLog) -> None:
    await db.run(
        """INSERT INTO review_logs
           (card_id, rating, state, due, stability, difficulty,
            elapsed_days, scheduled_days, review)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            card_id,
            int(log.rating),
            int(log.state),
            to_db_time(log.due),
            log.stability,
            log.difficulty,
            log.elapsed_days,
            log.scheduled_days,
            to_db_time(log.review),
        ),
    )
