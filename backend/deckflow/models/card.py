from __future__ import annotations

import json
from datetime import datetime
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, field_validator


class CardState(IntEnum):
    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3


class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


class SchedulingFields(BaseModel):
    """The seven scheduling attributes plus last_review. Immutable."""

    model_config = ConfigDict(frozen=True)

    state: CardState = CardState.NEW
    due: datetime
    stability: float = 0.0
    difficulty: float = 0.0
    elapsed_days: float = 0.0
    scheduled_days: float = 0.0
    reps: int = 0
    lapses: int = 0
    last_review: datetime | None = None


class ReviewLog(BaseModel):
    model_config = ConfigDict(frozen=True)

    rating: Rating
    state: CardState        # state before the review
    due: datetime           # due before the review
    stability: float
    difficulty: float
    elapsed_days: float
    scheduled_days: float
    review: datetime


class Card(BaseModel):
    id: int
    deck_id: int
    original_id: int | None
    question: str
    answer: str
    media_files: list[str] = []
    state: CardState
    due: datetime
    stability: float
    difficulty: float
    elapsed_days: float
    scheduled_days: float
    reps: int
    lapses: int
    last_review: datetime | None

    @field_validator("media_files", mode="before")
    @classmethod
    def _decode_media(cls, value):
        if value is None or value == "":
            return []
        if isinstance(value, str):
            return json.loads(value)
        return value

    @property
    def scheduling(self) -> SchedulingFields:
        return SchedulingFields(
            state=self.state,
            due=self.due,
            stability=self.stability,
            difficulty=self.difficulty,
            elapsed_days=self.elapsed_days,
            scheduled_days=self.scheduled_days,
            reps=self.reps,
            lapses=self.lapses,
            last_review=self.last_review,
        )

    def with_scheduling(self, fields: SchedulingFields) -> Card:
        return self.model_copy(update=fields.model_dump())
