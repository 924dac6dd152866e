"""Conversation records - turns, sessions and playable audio handles."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

ProviderName = Literal["primary", "secondary", "apology"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AudioRef(BaseModel):
    """Opaque handle to playable audio.

    Either inline bytes (``data``) or a location (``url``). ``format`` follows
    the ElevenLabs output format naming, e.g. ``pcm_16000`` or ``mp3_44100_128``.
    """

    data: bytes | None = None
    url: str | None = None
    format: str = "pcm_16000"

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.data and not self.url

    @property
    def sample_rate(self) -> int | None:
        """Sample rate encoded in a ``pcm_<rate>`` format, if any."""
        if self.format.startswith("pcm_"):
            try:
                return int(self.format.split("_", 1)[1])
            except ValueError:
                return None
        return None


class Message(BaseModel):
    """A role-tagged chat message as sent to a stateless provider."""

    role: Literal["system", "user", "assistant"]
    content: str

    model_config = {"frozen": True}


class TurnRecord(BaseModel):
    """One user/assistant exchange. Appended once, never mutated."""

    turn_index: int = Field(ge=0, description="Position in the session, survives eviction")
    user_text: str
    assistant_text: str
    audio_ref: AudioRef | None = None
    provider: ProviderName = "primary"
    created_at: datetime = Field(default_factory=_now)

    model_config = {"frozen": True}

    def to_messages(self) -> list[Message]:
        return [
            Message(role="user", content=self.user_text),
            Message(role="assistant", content=self.assistant_text),
        ]


class ConversationSession(BaseModel):
    """A logical conversation and its bounded turn history.

    ``provider_conversation_id`` is only ever written from a primary provider
    reply. Fallback turns leave it untouched; their continuity comes from
    ``turns`` instead.
    """

    session_id: str
    provider_conversation_id: str | None = None
    scenario: str | None = None
    turns: list[TurnRecord] = Field(default_factory=list)
    turn_count: int = Field(default=0, ge=0, description="Turns ever appended")
    created_at: datetime = Field(default_factory=_now)
    last_activity: datetime = Field(default_factory=_now)

    @property
    def is_continuation(self) -> bool:
        """True once the primary provider has assigned a conversation id."""
        return self.provider_conversation_id is not None
