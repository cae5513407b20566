from enum import Enum

from pydantic import BaseModel

from deckflow.models.deck import Deck


class PackageGeneration(str, Enum):
    LEGACY = "legacy"
    MODERN = "modern"


class DeckSchemaKind(str, Enum):
    DECKS_TABLE = "decks_table"
    COL_JSON = "col_json"
    FALLBACK = "fallback"


class DuplicatePolicy(str, Enum):
    INSERT = "insert"   # always add a new row on re-import
    UPSERT = "upsert"   # refresh content of (deck_id, original_id), keep progress


class UnmappedDeckPolicy(str, Enum):
    FIRST_DECK = "first_deck"
    SKIP = "skip"


class ImportResult(BaseModel):
    package_name: str
    generation: PackageGeneration
    deck_schema: DeckSchemaKind
    decks: list[Deck]
    inserted_cards: int = 0
    updated_cards: int = 0
    skipped_cards: int = 0
    redirected_cards: int = 0  # unmapped source deck, sent to the first deck
    media_files: int = 0
    warnings: list[str] = []
