"""Process-lifetime table of turn sessions keyed by connection id."""

import logging
from typing import Any, Callable

from voicebridge.core.turn_session import TurnSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[..., TurnSession]


class SessionRegistry:
    """Creates, looks up and tears down TurnSessions per connection.

    The factory is called as ``factory(connection_id, **options)`` and
    must return a fresh TurnSession.
    """

    def __init__(self, factory: SessionFactory):
        self._factory = factory
        self._sessions: dict[str, TurnSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions

    def get(self, connection_id: str) -> TurnSession | None:
        return self._sessions.get(connection_id)

    def open(self, connection_id: str, **options: Any) -> TurnSession:
        """Return the connection's session, creating it if needed."""
        session = self._sessions.get(connection_id)
        if session is None:
            session = self._factory(connection_id, **options)
            self._sessions[connection_id] = session
            logger.info(f"Opened turn session {session.session_id} for {connection_id}")
        return session

    async def start_turn_session(self, connection_id: str, **options: Any) -> TurnSession:
        """Open (if needed) and start capturing for a connection."""
        session = self.open(connection_id, **options)
        await session.start()
        return session

    async def stop_turn_session(self, connection_id: str) -> bool:
        """Stop a connection's session without removing it."""
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        await session.stop()
        return True

    async def close(self, connection_id: str) -> bool:
        """Stop and remove a connection's session."""
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return False
        await session.stop()
        logger.info(f"Closed turn session {session.session_id} for {connection_id}")
        return True

    async def close_all(self) -> None:
        for connection_id in list(self._sessions):
            await self.close(connection_id)
