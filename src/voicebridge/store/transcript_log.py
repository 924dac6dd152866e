"""Transcript log - durable record of sessions and their turns."""

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from voicebridge.contracts import CoachingEvaluation, TurnRecord
from voicebridge.contracts.coaching import SCORE_FIELDS


@dataclass
class TranscriptEntry:
    """One persisted utterance, from either side of the conversation."""

    session_id: str
    speaker: str  # "user" or "assistant"
    message: str
    provider: str | None
    turn_index: int
    timestamp: datetime


class TranscriptLog:
    """Append-only SQLite transcript store.

    Invariants:
    - Each TurnRecord is written as a user row followed by an assistant row
    - Turn rows are never updated; only whole sessions are deleted
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._conn() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    scenario TEXT,
                    conversation_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS turns (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    turn_index INTEGER NOT NULL,
                    speaker TEXT NOT NULL,
                    message TEXT NOT NULL,
                    provider TEXT,
                    timestamp TEXT NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES sessions (id)
                );

                CREATE TABLE IF NOT EXISTS evaluations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    overall_score INTEGER NOT NULL,
                    communication_score INTEGER NOT NULL,
                    problem_solving_score INTEGER NOT NULL,
                    professionalism_score INTEGER NOT NULL,
                    engagement_score INTEGER NOT NULL,
                    feedback TEXT NOT NULL,
                    strengths TEXT NOT NULL,
                    improvements TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES sessions (id)
                );

                CREATE INDEX IF NOT EXISTS idx_turns_session
                    ON turns(session_id);

                CREATE INDEX IF NOT EXISTS idx_evaluations_session
                    ON evaluations(session_id);
            """)

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with automatic commit/rollback."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def record_session(self, session_id: str, scenario: str | None = None) -> None:
        """Create the session row if it does not exist yet."""
        now = datetime.now(timezone.utc).isoformat()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO sessions (id, scenario, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (session_id, scenario, now, now),
            )

    def append_turn(self, session_id: str, turn: TurnRecord) -> None:
        """Persist both sides of a turn in one transaction."""
        ts = turn.created_at.isoformat()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO sessions (id, scenario, created_at, updated_at)
                VALUES (?, NULL, ?, ?)
                """,
                (session_id, ts, ts),
            )
            conn.executemany(
                """
                INSERT INTO turns
                    (session_id, turn_index, speaker, message, provider, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (session_id, turn.turn_index, "user", turn.user_text, None, ts),
                    (session_id, turn.turn_index, "assistant", turn.assistant_text, turn.provider, ts),
                ],
            )
            conn.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?",
                (ts, session_id),
            )

    def set_conversation_id(self, session_id: str, conversation_id: str) -> None:
        """Remember the primary provider conversation bound to a session."""
        now = datetime.now(timezone.utc).isoformat()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO sessions (id, scenario, created_at, updated_at)
                VALUES (?, NULL, ?, ?)
                """,
                (session_id, now, now),
            )
            conn.execute(
                "UPDATE sessions SET conversation_id = ?, updated_at = ? WHERE id = ?",
                (conversation_id, now, session_id),
            )

    def save_evaluation(self, session_id: str, evaluation: CoachingEvaluation) -> None:
        """Store a coaching evaluation. Earlier ones for the session are kept."""
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO evaluations
                    (session_id, overall_score, communication_score, problem_solving_score,
                     professionalism_score, engagement_score, feedback, strengths,
                     improvements, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    *(getattr(evaluation, name) for name in SCORE_FIELDS),
                    evaluation.feedback,
                    evaluation.strengths,
                    evaluation.improvements,
                    evaluation.created_at.isoformat(),
                ),
            )

    # ─────────────────────────────────────────────────────────────────────
    # Query Methods
    # ─────────────────────────────────────────────────────────────────────

    def get_session(self, session_id: str) -> dict | None:
        """Get a session row as a dict."""
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT id, scenario, conversation_id, created_at, updated_at
                FROM sessions WHERE id = ?
                """,
                (session_id,),
            ).fetchone()
        return dict(row) if row else None

    def get_turns(self, session_id: str, limit: int | None = None) -> list[TranscriptEntry]:
        """Get transcript entries for a session in chronological order.

        With ``limit``, only the most recent entries are returned.
        """
        with self._conn() as conn:
            cursor = conn.execute(
                """
                SELECT session_id, turn_index, speaker, message, provider, timestamp
                FROM turns
                WHERE session_id = ?
                ORDER BY id
                """,
                (session_id,),
            )
            entries = [
                TranscriptEntry(
                    session_id=row["session_id"],
                    speaker=row["speaker"],
                    message=row["message"],
                    provider=row["provider"],
                    turn_index=row["turn_index"],
                    timestamp=datetime.fromisoformat(row["timestamp"]),
                )
                for row in cursor
            ]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def get_evaluation(self, session_id: str) -> CoachingEvaluation | None:
        """Most recent evaluation for a session."""
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT * FROM evaluations
                WHERE session_id = ?
                ORDER BY id DESC
                LIMIT 1
                """,
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        return CoachingEvaluation(
            **{name: row[name] for name in SCORE_FIELDS},
            feedback=row["feedback"],
            strengths=row["strengths"],
            improvements=row["improvements"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def list_sessions(self, limit: int = 20) -> list[dict]:
        """Most recently updated sessions first."""
        with self._conn() as conn:
            cursor = conn.execute(
                """
                SELECT s.id, s.scenario, s.created_at, s.updated_at,
                       COUNT(t.id) AS entries
                FROM sessions s LEFT JOIN turns t ON t.session_id = s.id
                GROUP BY s.id
                ORDER BY s.updated_at DESC
                LIMIT ?
                """,
                (limit,),
            )
            return [dict(row) for row in cursor]

    def delete_session(self, session_id: str) -> None:
        with self._conn() as conn:
            conn.execute("DELETE FROM evaluations WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM turns WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
