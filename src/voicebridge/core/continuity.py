"""Conversation continuity.

Maps a session id to its bounded turn history and the conversation id the
primary provider assigned to it. The store is created by whoever owns the
process (server or CLI) and injected into the resolver.
"""

import logging
import sqlite3
import uuid
from datetime import datetime, timezone

from voicebridge.contracts import AudioRef, ConversationSession, Message, ProviderName, TurnRecord
from voicebridge.store import TranscriptLog

logger = logging.getLogger(__name__)


class ConversationStore:
    """In-memory session table with FIFO-capped turn history.

    Every operation completes without awaiting, so it is atomic per session
    on a single event loop.
    """

    def __init__(self, max_turns: int = 10, transcript_log: TranscriptLog | None = None):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.max_turns = max_turns
        self._transcript_log = transcript_log
        self._sessions: dict[str, ConversationSession] = {}

    @property
    def sessions(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> ConversationSession | None:
        return self._sessions.get(session_id)

    def get_or_create(
        self,
        session_id: str | None = None,
        scenario: str | None = None,
    ) -> ConversationSession:
        """Return the session, creating it on first use.

        A scenario passed for an existing session replaces the old one.
        """
        session_id = session_id or str(uuid.uuid4())

        session = self._sessions.get(session_id)
        if session is not None:
            if scenario is not None:
                session.scenario = scenario
            return session

        session = ConversationSession(session_id=session_id, scenario=scenario)
        self._sessions[session_id] = session
        logger.debug(f"Created conversation session {session_id}")

        if self._transcript_log is not None:
            try:
                self._transcript_log.record_session(session_id, scenario)
            except sqlite3.Error as e:
                logger.error(f"Failed to record session {session_id}: {e}")

        return session

    def append_turn(
        self,
        session_id: str,
        user_text: str,
        assistant_text: str,
        audio_ref: AudioRef | None = None,
        provider: ProviderName = "primary",
    ) -> TurnRecord:
        """Append a turn, evicting the oldest turns beyond ``max_turns``."""
        session = self.get_or_create(session_id)

        turn = TurnRecord(
            turn_index=session.turn_count,
            user_text=user_text,
            assistant_text=assistant_text,
            audio_ref=audio_ref,
            provider=provider,
        )
        session.turns.append(turn)
        session.turn_count += 1
        if len(session.turns) > self.max_turns:
            del session.turns[: len(session.turns) - self.max_turns]
        session.last_activity = datetime.now(timezone.utc)

        if self._transcript_log is not None:
            try:
                self._transcript_log.append_turn(session_id, turn)
            except sqlite3.Error as e:
                logger.error(f"Failed to persist turn {turn.turn_index} of {session_id}: {e}")

        return turn

    def get_context_window(self, session_id: str, max_turns: int) -> list[Message]:
        """Most recent ``max_turns`` turns as chronological user/assistant messages."""
        session = self._sessions.get(session_id)
        if session is None or max_turns <= 0:
            return []

        messages: list[Message] = []
        for turn in session.turns[-max_turns:]:
            messages.extend(turn.to_messages())
        return messages

    def get_provider_conversation_id(self, session_id: str) -> str | None:
        session = self._sessions.get(session_id)
        return session.provider_conversation_id if session else None

    def set_provider_conversation_id(self, session_id: str, conversation_id: str) -> None:
        session = self.get_or_create(session_id)
        if session.provider_conversation_id == conversation_id:
            return
        logger.debug(f"Session {session_id} bound to provider conversation {conversation_id}")
        session.provider_conversation_id = conversation_id

        if self._transcript_log is not None:
            try:
                self._transcript_log.set_conversation_id(session_id, conversation_id)
            except sqlite3.Error as e:
                logger.error(f"Failed to persist conversation id of {session_id}: {e}")

    def restore(self, session_id: str) -> ConversationSession | None:
        """Load a session back from the transcript log.

        Rebuilds the most recent ``max_turns`` turns, the scenario and the
        provider conversation id. A session already in memory is returned
        as is. Returns None when nothing was logged for the id.
        """
        session = self._sessions.get(session_id)
        if session is not None or self._transcript_log is None:
            return session

        try:
            row = self._transcript_log.get_session(session_id)
            entries = self._transcript_log.get_turns(session_id)
        except sqlite3.Error as e:
            logger.error(f"Failed to restore session {session_id}: {e}")
            return None
        if row is None:
            return None

        turns: list[TurnRecord] = []
        questions: dict[int, str] = {}
        for entry in entries:
            if entry.speaker == "user":
                questions[entry.turn_index] = entry.message
            elif entry.turn_index in questions:
                turns.append(
                    TurnRecord(
                        turn_index=entry.turn_index,
                        user_text=questions.pop(entry.turn_index),
                        assistant_text=entry.message,
                        provider=entry.provider or "primary",
                        created_at=entry.timestamp,
                    )
                )

        session = ConversationSession(
            session_id=session_id,
            scenario=row["scenario"],
            provider_conversation_id=row["conversation_id"],
            turns=turns[-self.max_turns :],
            turn_count=turns[-1].turn_index + 1 if turns else 0,
        )
        self._sessions[session_id] = session
        logger.info(f"Restored session {session_id} with {len(session.turns)} turns")
        return session

    def clear(self, session_id: str) -> bool:
        """Forget a session. Returns False if it did not exist."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.debug(f"Cleared conversation session {session_id}")
        return True

    def close(self) -> None:
        """Drop every session."""
        count = len(self._sessions)
        self._sessions.clear()
        if count:
            logger.info(f"Conversation store closed ({count} sessions dropped)")
