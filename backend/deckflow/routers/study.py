"""
Study session router.

Endpoints:
  POST   /study/sessions               - start a session over a deck's due cards
  GET    /study/sessions/{id}          - current entry, reveal flag, progress
  POST   /study/sessions/{id}/reveal   - show the answer of the current card
  POST   /study/sessions/{id}/rate     - rate, persist, requeue and advance
  DELETE /study/sessions/{id}          - end the session
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from deckflow.db import queries
from deckflow.db.base import Database
from deckflow.dependencies import get_db, get_oracle, get_sessions
from deckflow.errors import SessionError, SessionNotFound
from deckflow.models.study import RateRequest, RateResponse, SessionCreate, SessionSnapshot
from deckflow.services.scheduler import SchedulingOracle
from deckflow.services.session_registry import SessionRegistry
from deckflow.services.study_session import StudySession

logger = logging.getLogger(__name__)
router = APIRouter()


def _http_error(e: SessionError) -> HTTPException:
    # SessionBusy and invalid actions are both conflicts
    if isinstance(e, SessionNotFound):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=409, detail=str(e))


@router.post("/sessions", response_model=SessionSnapshot, status_code=201)
async def start_session(
    body: SessionCreate,
    db: Database = Depends(get_db),
    sessions: SessionRegistry = Depends(get_sessions),
    oracle: SchedulingOracle = Depends(get_oracle),
) -> SessionSnapshot:
    deck = await queries.get_deck(db, body.deck_id)
    if not deck:
        raise HTTPException(status_code=404, detail="Deck not found")
    session = await StudySession.start(db, deck.id, oracle, limit=body.limit)
    # nothing due: the session is born finished and never registered
    if not session.finished:
        sessions.add(session)
    return session.snapshot()


@router.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionSnapshot:
    try:
        return sessions.get(session_id).snapshot()
    except SessionError as e:
        raise _http_error(e)


@router.post("/sessions/{session_id}/reveal", response_model=SessionSnapshot)
async def reveal(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionSnapshot:
    try:
        async with sessions.exclusive(session_id) as session:
            session.reveal()
            return session.snapshot()
    except SessionError as e:
        raise _http_error(e)


@router.post("/sessions/{session_id}/rate", response_model=RateResponse)
async def rate(
    session_id: str,
    body: RateRequest,
    sessions: SessionRegistry = Depends(get_sessions),
) -> RateResponse:
    try:
        async with sessions.exclusive(session_id) as session:
            outcome = await session.rate(
                body.rating,
                override_due=body.override_due,
                requeue_offset=body.requeue_offset,
            )
            return RateResponse(outcome=outcome, session=session.snapshot())
    except SessionError as e:
        raise _http_error(e)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/sessions/{session_id}", status_code=204)
async def end_session(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> None:
    try:
        sessions.remove(session_id)
    except SessionError as e:
        raise _http_error(e)
