"""In-memory registry of anonymous widget visitor sessions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from omnichannel.models import utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionInfo:
    session_id: str
    connection_id: str
    company_id: str
    visitor_name: str | None = None
    visitor_email: str | None = None
    visitor_phone: str | None = None
    contact_id: str | None = None
    conversation_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_active_at: datetime = field(default_factory=utcnow)


class SessionRegistry:
    """Sessions expire after ``ttl_seconds`` without activity."""

    def __init__(
        self, ttl_seconds: float = 86400, *, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._sessions: dict[str, SessionInfo] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> SessionInfo | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._expired(session):
            del self._sessions[session_id]
            return None
        return session

    def register(
        self,
        session_id: str,
        connection_id: str,
        company_id: str,
        *,
        visitor_name: str | None = None,
        visitor_email: str | None = None,
        visitor_phone: str | None = None,
    ) -> SessionInfo:
        """Create the session or fill in visitor details it was missing, and touch it."""
        self.evict_expired()
        session = self.get(session_id)
        if session is None or session.connection_id != connection_id:
            session = SessionInfo(
                session_id=session_id,
                connection_id=connection_id,
                company_id=company_id,
                visitor_name=visitor_name,
                visitor_email=visitor_email,
                visitor_phone=visitor_phone,
                created_at=self._clock(),
                last_active_at=self._clock(),
            )
            self._sessions[session_id] = session
            return session
        session.visitor_name = session.visitor_name or visitor_name
        session.visitor_email = session.visitor_email or visitor_email
        session.visitor_phone = session.visitor_phone or visitor_phone
        session.last_active_at = self._clock()
        return session

    def for_connection(self, connection_id: str) -> list[SessionInfo]:
        return [
            s
            for s in self._sessions.values()
            if s.connection_id == connection_id and not self._expired(s)
        ]

    def evict_connection(self, connection_id: str) -> int:
        doomed = [sid for sid, s in self._sessions.items() if s.connection_id == connection_id]
        for session_id in doomed:
            del self._sessions[session_id]
        return len(doomed)

    def evict_expired(self) -> int:
        doomed = [sid for sid, s in self._sessions.items() if self._expired(s)]
        for session_id in doomed:
            del self._sessions[session_id]
        if doomed:
            logger.info("Evicted %d idle webchat sessions", len(doomed))
        return len(doomed)

    def _expired(self, session: SessionInfo) -> bool:
        return self._clock() - session.last_active_at > self._ttl
