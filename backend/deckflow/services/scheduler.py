"""
Scheduling oracle.

The study engine only depends on the ``SchedulingOracle`` call contract:
``oracle(fields, rating, now) -> (next_fields, review_log)``. Inputs are
never mutated; new frozen values are returned.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Protocol

from fsrs_rs_python import DEFAULT_PARAMETERS, FSRS, MemoryState

from deckflow.db.queries import as_utc
from deckflow.models.card import CardState, Rating, ReviewLog, SchedulingFields

logger = logging.getLogger(__name__)

GRADUATION_DAYS = 1.0
MIN_INTERVAL_DAYS = 1.0 / 1440.0  # one minute


class SchedulingOracle(Protocol):
    def __call__(
        self, fields: SchedulingFields, rating: Rating, now: datetime
    ) -> tuple[SchedulingFields, ReviewLog]: ...


def next_card_state(current: CardState, rating: Rating, interval_days: float) -> CardState:
    if interval_days >= GRADUATION_DAYS:
        return CardState.REVIEW
    if current in (CardState.REVIEW, CardState.RELEARNING):
        if rating is Rating.AGAIN or current is CardState.RELEARNING:
            return CardState.RELEARNING
        return CardState.REVIEW
    return CardState.LEARNING


def elapsed_days(fields: SchedulingFields, now: datetime) -> float:
    if fields.last_review is None:
        return 0.0
    return max(0.0, (now - as_utc(fields.last_review)).total_seconds() / 86400.0)


class FsrsOracle:
    """FSRS memory-state scheduling via fsrs-rs-python."""

    def __init__(
        self,
        desired_retention: float = 0.9,
        maximum_interval: int = 36500,
        parameters: Sequence[float] | None = None,
    ) -> None:
        self.fsrs = FSRS(parameters=list(parameters or DEFAULT_PARAMETERS))
        self.desired_retention = desired_retention
        self.maximum_interval = maximum_interval

    def _memory_state(self, fields: SchedulingFields) -> MemoryState | None:
        if fields.state is CardState.NEW or fields.stability <= 0:
            return None
        return MemoryState(
            stability=max(0.1, float(fields.stability)),
            difficulty=max(1.0, min(10.0, float(fields.difficulty))),
        )

    def __call__(
        self, fields: SchedulingFields, rating: Rating, now: datetime
    ) -> tuple[SchedulingFields, ReviewLog]:
        rating = Rating(rating)
        now = as_utc(now)
        elapsed = elapsed_days(fields, now)

        states = self.fsrs.next_states(
            self._memory_state(fields), self.desired_retention, round(elapsed)
        )
        chosen = {
            Rating.AGAIN: states.again,
            Rating.HARD: states.hard,
            Rating.GOOD: states.good,
            Rating.EASY: states.easy,
        }[rating]
        interval = min(max(float(chosen.interval), MIN_INTERVAL_DAYS), float(self.maximum_interval))

        lapses = fields.lapses
        if rating is Rating.AGAIN and fields.state is CardState.REVIEW:
            lapses += 1

        next_fields = SchedulingFields(
            state=next_card_state(fields.state, rating, interval),
            due=now + timedelta(days=interval),
            stability=float(chosen.memory.stability),
            difficulty=float(chosen.memory.difficulty),
            elapsed_days=elapsed,
            scheduled_days=interval,
            reps=fields.reps + 1,
            lapses=lapses,
            last_review=now,
        )
        log = ReviewLog(
            rating=rating,
            state=fields.state,
            due=fields.due,
            stability=fields.stability,
            difficulty=fields.difficulty,
            elapsed_days=elapsed,
            scheduled_days=interval,
            review=now,
        )
        logger.debug(
            "FSRS %s: %s -> %s, interval %.3fd",
            rating.name,
            fields.state.name,
            next_fields.state.name,
            interval,
        )
        return next_fields, log
