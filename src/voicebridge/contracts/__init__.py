"""Typed contracts shared across voicebridge components."""

from voicebridge.contracts.coaching import CoachingEvaluation
from voicebridge.contracts.conversation import (
    AudioRef,
    ConversationSession,
    Message,
    ProviderName,
    TurnRecord,
)
from voicebridge.contracts.events import (
    EventKind,
    ModeChanged,
    ProcessingStarted,
    SessionError,
    SessionEvent,
    SpeechDetected,
    StateChanged,
    Transcript,
    TurnCompleted,
    TurnState,
    session_event_adapter,
)

__all__ = [
    # Coaching
    "CoachingEvaluation",
    # Conversation
    "AudioRef",
    "ConversationSession",
    "Message",
    "ProviderName",
    "TurnRecord",
    # Events
    "EventKind",
    "ModeChanged",
    "ProcessingStarted",
    "SessionError",
    "SessionEvent",
    "SpeechDetected",
    "StateChanged",
    "Transcript",
    "TurnCompleted",
    "TurnState",
    "session_event_adapter",
]
