"""
Study queue engine.

A session snapshots the due cards of one deck when it starts, then walks
them in order. Each card is shown Hidden and must be revealed before it can
be rated. A rating is persisted immediately and may insert a repeat entry
for the same card later in the queue.
"""
from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from deckflow.config import settings
from deckflow.db import queries
from deckflow.db.base import Database
from deckflow.errors import SessionError
from deckflow.models.card import Card, Rating
from deckflow.models.study import QueueEntryView, RatingOutcome, SessionSnapshot
from deckflow.services.scheduler import SchedulingOracle

logger = logging.getLogger(__name__)

REQUEUE_RATINGS = frozenset({Rating.AGAIN, Rating.HARD})
# An override further out than this takes the card out of the sitting
OVERRIDE_LEAVES_SESSION = timedelta(hours=1)


class Face(str, Enum):
    HIDDEN = "hidden"
    REVEALED = "revealed"


@dataclass(frozen=True)
class QueueEntry:
    card_id: int
    is_repeat: bool = False


class StudySession:
    def __init__(
        self,
        db: Database,
        deck_id: int,
        cards: list[Card],
        oracle: SchedulingOracle,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.db = db
        self.deck_id = deck_id
        self.oracle = oracle
        # latest value per card, so repeats see post-rating scheduling
        self._cards: dict[int, Card] = {c.id: c for c in cards}
        self.queue: list[QueueEntry] = [QueueEntry(c.id) for c in cards]
        self.position = 0
        self.face = Face.HIDDEN
        self.exited = False

    @classmethod
    async def start(
        cls,
        db: Database,
        deck_id: int,
        oracle: SchedulingOracle,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> StudySession:
        """Select the deck's due cards once, oldest due first."""
        if limit is None:
            limit = settings.session_size
        if limit < 1:
            raise ValueError(f"Session limit must be at least 1, got {limit}")
        now = queries.as_utc(now) if now is not None else queries.utcnow()
        cards = await queries.get_due_cards(db, deck_id, now, limit)
        session = cls(db, deck_id, cards, oracle)
        logger.info(
            "Study session %s started for deck %d with %d cards", session.id, deck_id, len(cards)
        )
        return session

    # --- State ---

    @property
    def finished(self) -> bool:
        return self.exited or self.position >= len(self.queue)

    @property
    def current_entry(self) -> QueueEntry | None:
        if self.finished:
            return None
        return self.queue[self.position]

    @property
    def current_card(self) -> Card | None:
        entry = self.current_entry
        return self._cards[entry.card_id] if entry else None

    @property
    def revealed(self) -> bool:
        return self.face is Face.REVEALED

    def snapshot(self) -> SessionSnapshot:
        entry = self.current_entry
        current = None
        if entry is not None:
            card = self._cards[entry.card_id]
            current = QueueEntryView(
                card_id=card.id,
                is_repeat=entry.is_repeat,
                question=card.question,
                answer=card.answer if self.revealed else None,
                media_files=card.media_files,
            )
        return SessionSnapshot(
            id=self.id,
            deck_id=self.deck_id,
            position=self.position,
            queue_length=len(self.queue),
            revealed=self.revealed,
            finished=self.finished,
            current=current,
        )

    # --- Actions ---

    def reveal(self) -> Card:
        card = self.current_card
        if card is None:
            raise SessionError("Session is finished")
        self.face = Face.REVEALED
        return card

    async def rate(
        self,
        rating: Rating,
        now: datetime | None = None,
        override_due: datetime | None = None,
        requeue_offset: int | None = None,
    ) -> RatingOutcome:
        """Apply a rating to the current card, persist it, requeue and advance.

        If persisting fails the error propagates and the session stays on
        the same card.
        """
        card = self.current_card
        if card is None:
            raise SessionError("Session is finished")
        if not self.revealed:
            raise SessionError("Reveal the answer before rating")
        if requeue_offset is not None and requeue_offset < 0:
            raise ValueError(f"requeue_offset must be >= 0, got {requeue_offset}")

        rating = Rating(rating)
        now = queries.as_utc(now) if now is not None else queries.utcnow()

        fields, log = self.oracle(card.scheduling, rating, now)
        if override_due is not None:
            override_due = queries.as_utc(override_due)
            gap_days = (override_due - now).total_seconds() / 86400.0
            fields = fields.model_copy(
                update={"due": override_due, "scheduled_days": max(0, math.ceil(gap_days))}
            )
        fields = fields.model_copy(update={"last_review": now})

        async with self.db.transaction():
            await queries.update_card_scheduling(self.db, card.id, fields, now)
            await queries.insert_review_log(self.db, card.id, log)

        updated = card.with_scheduling(fields)
        self._cards[card.id] = updated

        requeue_position = self._requeue(card.id, rating, now, override_due, requeue_offset)
        self.position += 1
        self.face = Face.HIDDEN

        logger.debug(
            "Session %s: card %d rated %s, requeue at %s",
            self.id,
            card.id,
            rating.name,
            requeue_position,
        )
        return RatingOutcome(
            card=updated,
            review_log=log,
            requeued=requeue_position is not None,
            requeue_position=requeue_position,
            finished=self.finished,
        )

    def _requeue(
        self,
        card_id: int,
        rating: Rating,
        now: datetime,
        override_due: datetime | None,
        requeue_offset: int | None,
    ) -> int | None:
        if requeue_offset is not None:
            index = min(self.position + 1 + requeue_offset, len(self.queue))
        elif rating in REQUEUE_RATINGS:
            if override_due is not None and override_due - now > OVERRIDE_LEAVES_SESSION:
                return None
            index = len(self.queue)
        else:
            return None
        self.queue.insert(index, QueueEntry(card_id, is_repeat=True))
        return index

    def exit(self) -> None:
        self.exited = True
        logger.info(
            "Study session %s exited at %d/%d", self.id, self.position, len(self.queue)
        )
