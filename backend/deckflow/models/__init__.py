from deckflow.models.card import Card, CardState, Rating, ReviewLog, SchedulingFields
from deckflow.models.deck import Deck, DeckList, DeckSummary
from deckflow.models.importing import (
    DeckSchemaKind,
    DuplicatePolicy,
    ImportResult,
    PackageGeneration,
    UnmappedDeckPolicy,
)
from deckflow.models.study import (
    QueueEntryView,
    RateRequest,
    RateResponse,
    RatingOutcome,
    SessionCreate,
    SessionSnapshot,
)

__all__ = [
    "Card",
    "CardState",
    "Deck",
    "DeckList",
    "DeckSchemaKind",
    "DeckSummary",
    "DuplicatePolicy",
    "ImportResult",
    "PackageGeneration",
    "QueueEntryView",
    "RateRequest",
    "RateResponse",
    "Rating",
    "RatingOutcome",
    "ReviewLog",
    "SchedulingFields",
    "SessionCreate",
    "SessionSnapshot",
    "UnmappedDeckPolicy",
]
