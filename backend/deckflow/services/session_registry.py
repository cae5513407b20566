from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from deckflow.errors import SessionBusy, SessionNotFound
from deckflow.services.study_session import StudySession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """In-process study sessions keyed by id, one rating in flight per session."""

    def __init__(self) -> None:
        self._sessions: dict[str, StudySession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def add(self, session: StudySession) -> StudySession:
        self._sessions[session.id] = session
        self._locks[session.id] = asyncio.Lock()
        return session

    def get(self, session_id: str) -> StudySession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Study session {session_id} not found")
        return session

    @asynccontextmanager
    async def exclusive(self, session_id: str) -> AsyncIterator[StudySession]:
        """Hold the session for one action; an overlapping action gets SessionBusy.

        A session whose queue is exhausted by the action is dropped afterwards.
        """
        session = self.get(session_id)
        lock = self._locks[session_id]
        if lock.locked():
            raise SessionBusy(f"Study session {session_id} is busy")
        async with lock:
            yield session
        if session.finished:
            self._discard(session_id)
            logger.info("Study session %s finished and was released", session_id)

    def remove(self, session_id: str) -> StudySession:
        session = self.get(session_id)
        session.exit()
        self._discard(session_id)
        return session

    def _discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)

    def clear_deck(self, deck_id: int) -> int:
        """End every session of a deleted deck."""
        doomed = [s.id for s in self._sessions.values() if s.deck_id == deck_id]
        for session_id in doomed:
            self.remove(session_id)
        if doomed:
            logger.info("Ended %d study sessions of deleted deck %d", len(doomed), deck_id)
        return len(doomed)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
