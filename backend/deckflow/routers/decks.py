from fastapi import APIRouter, Depends, HTTPException

from deckflow.db import queries
from deckflow.db.base import Database
from deckflow.dependencies import get_db, get_sessions
from deckflow.models.deck import Deck, DeckList
from deckflow.services.session_registry import SessionRegistry

router = APIRouter()


@router.get("/", response_model=DeckList)
async def list_decks(db: Database = Depends(get_db)):
    items = await queries.list_decks(db)
    return DeckList(items=items, total=len(items))


@router.get("/{deck_id}", response_model=Deck)
async def get_deck(deck_id: int, db: Database = Depends(get_db)):
    deck = await queries.get_deck(db, deck_id)
    if not deck:
        raise HTTPException(status_code=404, detail="Deck not found")
    return deck


@router.delete("/{deck_id}", status_code=204)
async def delete_deck(
    deck_id: int,
    db: Database = Depends(get_db),
    sessions: SessionRegistry = Depends(get_sessions),
):
    deleted = await queries.delete_deck(db, deck_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Deck not found")
    sessions.clear_deck(deck_id)
    await db.flush()
