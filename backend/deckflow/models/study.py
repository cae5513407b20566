from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from deckflow.models.card import Card, Rating, ReviewLog


class SessionCreate(BaseModel):
    deck_id: int
    limit: int | None = Field(default=None, ge=1, le=500)


class RateRequest(BaseModel):
    rating: Rating  # 1=Again, 2=Hard, 3=Good, 4=Easy
    override_due: datetime | None = None
    requeue_offset: int | None = Field(default=None, ge=0)


class QueueEntryView(BaseModel):
    card_id: int
    is_repeat: bool
    question: str
    answer: str | None  # None while the card is hidden
    media_files: list[str]


class SessionSnapshot(BaseModel):
    id: str
    deck_id: int
    position: int
    queue_length: int
    revealed: bool
    finished: bool
    current: QueueEntryView | None


class RatingOutcome(BaseModel):
    card: Card
    review_log: ReviewLog
    requeued: bool
    requeue_position: int | None
    finished: bool


class RateResponse(BaseModel):
    outcome: RatingOutcome
    session: SessionSnapshot
