"""Session storage behind a minimal get/put/expire interface.

The in-memory store is the default. Anything with the same three
operations (a shared cache, for example) can replace it.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from loguru import logger

from truth_engine.session.state import Session


class SessionStore(ABC):
    """Storage interface for sessions."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        """Return the session or None."""

    @abstractmethod
    async def put(self, session: Session) -> None:
        """Insert or replace a session."""

    @abstractmethod
    async def expire(self, now: Optional[float] = None) -> list[Session]:
        """Remove and return sessions whose ``expires_at`` has passed."""


class InMemorySessionStore(SessionStore):
    """Dict-backed store guarded by an asyncio lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self.logger = logger.bind(component="InMemorySessionStore")

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def put(self, session: Session) -> None:
        async with self._lock:
            self._sessions[session.session_id] = session

    async def expire(self, now: Optional[float] = None) -> list[Session]:
        now = self._clock() if now is None else now
        async with self._lock:
            expired = [
                s for s in self._sessions.values()
                if s.expires_at is not None and s.expires_at <= now
            ]
            for session in expired:
                del self._sessions[session.session_id]

        if expired:
            self.logger.debug(f"Expired {len(expired)} sessions",
                              session_ids=[s.session_id for s in expired])
        return expired

    async def all(self) -> list[Session]:
        async with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)
