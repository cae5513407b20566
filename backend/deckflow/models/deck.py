from pydantic import BaseModel


class Deck(BaseModel):
    id: int
    original_id: int | None
    name: str
    created_at: str


class DeckSummary(Deck):
    total_cards: int = 0
    due_cards: int = 0


class DeckList(BaseModel):
    items: list[DeckSummary]
    total: int
