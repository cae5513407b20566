"""
Package import pipeline.

Reading (unpack, decompress, open, schema detection, notes/cards, media)
runs in a worker thread. Decks and cards are then written in a single
transaction, so a failed import leaves the store as it was.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from deckflow.db import queries
from deckflow.db.base import Database
from deckflow.errors import ImportFailed, TransactionFailure
from deckflow.models.deck import Deck
from deckflow.models.importing import (
    DuplicatePolicy,
    ImportResult,
    PackageGeneration,
    UnmappedDeckPolicy,
)
from deckflow.services.deck_schema import DeckSchema, SourceDeck, detect_deck_schema
from deckflow.services.media import extract_media
from deckflow.services.package_reader import (
    SourceCard,
    SourceNote,
    open_package,
    read_cards,
    read_notes,
)

logger = logging.getLogger(__name__)

DEFAULT_DECK_NAME = "Default"


@dataclass
class PackageContents:
    generation: PackageGeneration
    deck_schema: DeckSchema
    notes: dict[int, SourceNote]
    cards: list[SourceCard]
    media_files: int = 0
    warnings: list[str] = field(default_factory=list)


def read_package(path: Path, media_dir: Path) -> PackageContents:
    """Blocking part of the import. Raises InvalidPackage for unusable packages."""
    with open_package(path) as package:
        schema = detect_deck_schema(package.conn)
        notes = read_notes(package.conn)
        cards = read_cards(package.conn)
        media = extract_media(package.archive, media_dir)
    return PackageContents(
        generation=package.generation,
        deck_schema=schema,
        notes=notes,
        cards=cards,
        media_files=media.extracted,
        warnings=list(media.warnings),
    )


def select_source_decks(decks: list[SourceDeck]) -> list[SourceDeck]:
    """Drop Anki's built-in Default deck when the package has real decks."""
    named = [d for d in decks if d.name != DEFAULT_DECK_NAME]
    return named or decks


class PackageImporter:
    def __init__(
        self,
        db: Database,
        media_dir: Path,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.UPSERT,
        unmapped_deck_policy: UnmappedDeckPolicy = UnmappedDeckPolicy.FIRST_DECK,
    ) -> None:
        self.db = db
        self.media_dir = media_dir
        self.duplicate_policy = DuplicatePolicy(duplicate_policy)
        self.unmapped_deck_policy = UnmappedDeckPolicy(unmapped_deck_policy)

    async def import_package(
        self, path: Path, package_name: str | None = None
    ) -> ImportResult:
        package_name = package_name or path.stem
        logger.info("Importing package %s", package_name)

        try:
            contents = await asyncio.to_thread(read_package, path, self.media_dir)
        except ImportFailed:
            raise
        except Exception as e:
            raise ImportFailed("read", f"Could not read {package_name}", e) from e

        result = ImportResult(
            package_name=package_name,
            generation=contents.generation,
            deck_schema=contents.deck_schema.kind,
            decks=[],
            media_files=contents.media_files,
            warnings=contents.warnings,
        )

        try:
            async with self.db.transaction():
                await self._commit(contents, package_name, result)
        except Exception as e:
            logger.error("Import of %s rolled back: %s", package_name, e)
            raise TransactionFailure("commit", f"Could not store {package_name}", e) from e

        await self.db.flush()
        logger.info(
            "Imported %s: %d decks, %d new cards, %d updated, %d skipped, %d redirected",
            package_name,
            len(result.decks),
            result.inserted_cards,
            result.updated_cards,
            result.skipped_cards,
            result.redirected_cards,
        )
        return result

    async def _commit(
        self, contents: PackageContents, package_name: str, result: ImportResult
    ) -> None:
        sources = select_source_decks(contents.deck_schema.source_decks(package_name))
        deck_map: dict[int | None, int] = {}
        for source in sources:
            deck = await self._materialize_deck(source)
            deck_map[source.original_id] = deck.id
            if all(d.id != deck.id for d in result.decks):
                result.decks.append(deck)

        first_deck = result.decks[0] if result.decks else None
        now = queries.utcnow()
        unmapped = 0
        missing_notes = 0

        for card in contents.cards:
            note = contents.notes.get(card.note_id)
            if note is None:
                missing_notes += 1
                result.skipped_cards += 1
                continue

            # the synthetic fallback deck (original_id None) takes every card
            deck_id = deck_map.get(card.deck_id, deck_map.get(None))
            if deck_id is None:
                if self.unmapped_deck_policy is UnmappedDeckPolicy.SKIP or first_deck is None:
                    unmapped += 1
                    result.skipped_cards += 1
                    continue
                deck_id = first_deck.id
                result.redirected_cards += 1

            await self._store_card(deck_id, card, note, now, result)

        if missing_notes:
            logger.warning("%s: %d cards reference missing notes", package_name, missing_notes)
        if unmapped:
            logger.warning("%s: %d cards with unknown deck skipped", package_name, unmapped)
        if result.redirected_cards:
            logger.info(
                "%s: %d cards with unknown deck placed in %r",
                package_name,
                result.redirected_cards,
                first_deck.name if first_deck else None,
            )

    async def _materialize_deck(self, source: SourceDeck) -> Deck:
        if source.original_id is None:
            existing = await queries.find_unlinked_deck(self.db, source.name)
        else:
            existing = await queries.find_deck_by_original_id(self.db, source.original_id)
        if existing is not None:
            return existing
        deck = await queries.insert_deck(self.db, source.name, source.original_id)
        logger.debug("Created deck %r (local id %d)", deck.name, deck.id)
        return deck

    async def _store_card(
        self,
        deck_id: int,
        card: SourceCard,
        note: SourceNote,
        now: datetime,
        result: ImportResult,
    ) -> None:
        if self.duplicate_policy is DuplicatePolicy.UPSERT:
            existing = await queries.find_card_id(self.db, deck_id, card.id)
            if existing is not None:
                await queries.update_card_content(
                    self.db, existing, note.question, note.answer, note.media_files
                )
                result.updated_cards += 1
                return
        await queries.insert_card(
            self.db, deck_id, card.id, note.question, note.answer, note.media_files, now
        )
        result.inserted_cards += 1
