"""Conversation store for in-memory session storage."""

import os
from datetime import UTC, datetime, timedelta

from cuid2 import cuid_wrapper

from app.models.session import Session
from app.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class InMemorySessionManager:
    """In-memory conversation store keyed by session id.

    Sessions idle for longer than the timeout are dropped on the next
    access, together with their history and any paused orchestration.
    """

    def __init__(self, session_timeout_minutes: int | None = None):
        """Initialize session manager.

        Args:
            session_timeout_minutes: Idle minutes before a session expires
                (defaults to SESSION_TIMEOUT_MINUTES, then 60)
        """
        if session_timeout_minutes is None:
            session_timeout_minutes = int(os.getenv("SESSION_TIMEOUT_MINUTES", "60"))
        self.sessions: dict[str, Session] = {}
        self.session_timeout = timedelta(minutes=session_timeout_minutes)

    def get_or_create_session(self, session_id: str | None = None) -> Session:
        """Return the live session for ``session_id``, creating one if needed."""
        if session_id and (session := self.get_session(session_id)):
            return session

        session = Session(session_id=session_id or cuid())
        self.sessions[session.session_id] = session
        logger.info(f"Created session {session.session_id}")
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Look up a live session and mark it active.

        Returns:
            Session if found and not expired, None otherwise
        """
        self._expire_idle_sessions()

        session = self.sessions.get(session_id)
        if session is not None:
            session.update_activity()
        return session

    def delete_session(self, session_id: str) -> bool:
        """Delete a session, returning whether it existed."""
        return self.sessions.pop(session_id, None) is not None

    def _expire_idle_sessions(self) -> None:
        cutoff = datetime.now(UTC) - self.session_timeout
        expired = [sid for sid, session in self.sessions.items() if session.last_activity < cutoff]
        for session_id in expired:
            session = self.sessions.pop(session_id)
            if session.awaiting_confirmation:
                logger.info(f"Session {session_id} expired with a tool call still awaiting confirmation")
        if expired:
            logger.info(f"Expired {len(expired)} idle session(s)")

    def get_session_count(self) -> int:
        """Get current number of active sessions."""
        self._expire_idle_sessions()
        return len(self.sessions)

    def get_profiled_session_count(self) -> int:
        """Get current number of sessions with an attached student profile."""
        self._expire_idle_sessions()
        return sum(1 for session in self.sessions.values() if session.profile is not None)

    def get_awaiting_session_count(self) -> int:
        """Get current number of sessions paused on a tool confirmation."""
        self._expire_idle_sessions()
        return sum(1 for session in self.sessions.values() if session.awaiting_confirmation)


session_manager = InMemorySessionManager()


def get_session_manager() -> InMemorySessionManager:
    """Get the process-wide session manager."""
    return session_manager
