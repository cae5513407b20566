"""Local store schema, applied idempotently by every backend on open."""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS decks (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    original_id INTEGER,
    name        TEXT NOT NULL CHECK (name <> ''),
    created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_decks_original
    ON decks(original_id) WHERE original_id IS NOT NULL;

CREATE TABLE IF NOT EXISTS cards (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    deck_id        INTEGER NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    original_id    INTEGER,
    question       TEXT NOT NULL,
    answer         TEXT NOT NULL,
    media_files    TEXT NOT NULL DEFAULT '[]',

    -- 0=New, 1=Learning, 2=Review, 3=Relearning
    state          INTEGER NOT NULL DEFAULT 0,
    due            TEXT NOT NULL,
    stability      REAL NOT NULL DEFAULT 0,
    difficulty     REAL NOT NULL DEFAULT 0,
    elapsed_days   REAL NOT NULL DEFAULT 0,
    scheduled_days REAL NOT NULL DEFAULT 0,
    reps           INTEGER NOT NULL DEFAULT 0,
    lapses         INTEGER NOT NULL DEFAULT 0,
    last_review    TEXT
);
CREATE INDEX IF NOT EXISTS idx_cards_deck_due ON cards(deck_id, due);
CREATE INDEX IF NOT EXISTS idx_cards_original ON cards(deck_id, original_id);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
INSERT OR IGNORE INTO schema_version(version) VALUES (1);
"""

# version -> script; applied in order when the stored version is lower
MIGRATIONS: dict[int, str] = {
    2: """
        CREATE TABLE IF NOT EXISTS review_logs (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            card_id        INTEGER NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
            rating         INTEGER NOT NULL,
            state          INTEGER NOT NULL,
            due            TEXT NOT NULL,
            stability      REAL NOT NULL,
            difficulty     REAL NOT NULL,
            elapsed_days   REAL NOT NULL,
            scheduled_days REAL NOT NULL,
            review         TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_review_logs_card ON review_logs(card_id);
        INSERT OR IGNORE INTO schema_version(version) VALUES (2);
    """,
}

CURRENT_VERSION = max(MIGRATIONS)


def pending_migrations(current_version: int) -> list[tuple[int, str]]:
    return [(v, sql) for v, sql in sorted(MIGRATIONS.items()) if v > current_version]


async def apply_schema(db) -> None:
    """Create missing tables and run pending migrations on any Database."""
    await db.exec(SCHEMA_SQL)
    row = await db.get_first("SELECT MAX(version) AS version FROM schema_version")
    current_version = (row or {}).get("version") or 1
    for version, sql in pending_migrations(current_version):
        await db.exec(sql)
        logger.info("Applied schema migration v%d (%s backend)", version, db.backend_name)
