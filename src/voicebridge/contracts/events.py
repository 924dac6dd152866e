"""Session events - everything a turn session reports upward.

Events form a closed tagged union discriminated on ``kind``. UI, CLI and the
socket server all consume the same ``SessionEvent`` type through one
``EventChannel`` per session.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from voicebridge.contracts.conversation import AudioRef, ProviderName


class TurnState(str, Enum):
    """States of the turn-taking state machine."""

    IDLE = "idle"
    CAPTURING = "capturing"
    AWAITING_RESPONSE = "awaiting_response"
    PLAYING = "playing"


class EventKind(str, Enum):
    MODE_CHANGED = "mode_changed"
    STATE_CHANGED = "state_changed"
    SPEECH_DETECTED = "speech_detected"
    PROCESSING_STARTED = "processing_started"
    TRANSCRIPT = "transcript"
    TURN_COMPLETED = "turn_completed"
    ERROR = "error"


class _BaseEvent(BaseModel):
    session_id: str
    ts_wall: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class ModeChanged(_BaseEvent):
    """Agent mode: listening to the user, or speaking to them."""

    kind: Literal[EventKind.MODE_CHANGED] = EventKind.MODE_CHANGED
    mode: Literal["listening", "speaking"]


class StateChanged(_BaseEvent):
    kind: Literal[EventKind.STATE_CHANGED] = EventKind.STATE_CHANGED
    previous: TurnState
    current: TurnState


class SpeechDetected(_BaseEvent):
    kind: Literal[EventKind.SPEECH_DETECTED] = EventKind.SPEECH_DETECTED


class ProcessingStarted(_BaseEvent):
    kind: Literal[EventKind.PROCESSING_STARTED] = EventKind.PROCESSING_STARTED


class Transcript(_BaseEvent):
    kind: Literal[EventKind.TRANSCRIPT] = EventKind.TRANSCRIPT
    text: str
    is_final: bool = True


class TurnCompleted(_BaseEvent):
    kind: Literal[EventKind.TURN_COMPLETED] = EventKind.TURN_COMPLETED
    user_text: str
    assistant_text: str
    audio_ref: AudioRef | None = None
    provider: ProviderName = "primary"
    provider_conversation_id: str | None = None


class SessionError(_BaseEvent):
    kind: Literal[EventKind.ERROR] = EventKind.ERROR
    reason: str
    error_type: str = "VoiceBridgeError"


SessionEvent = Annotated[
    Union[
        ModeChanged,
        StateChanged,
        SpeechDetected,
        ProcessingStarted,
        Transcript,
        TurnCompleted,
        SessionError,
    ],
    Field(discriminator="kind"),
]

session_event_adapter: TypeAdapter[SessionEvent] = TypeAdapter(SessionEvent)
