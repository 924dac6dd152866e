"""Tests for conversation records and session events."""

import pytest
from pydantic import ValidationError

from voicebridge.contracts import (
    AudioRef,
    ConversationSession,
    EventKind,
    Message,
    SessionError,
    Transcript,
    TurnCompleted,
    TurnRecord,
    session_event_adapter,
)


class TestAudioRef:
    def test_empty_ref(self):
        assert AudioRef().is_empty
        assert not AudioRef(data=b"\x00").is_empty
        assert not AudioRef(url="https://example.com/a.mp3").is_empty

    def test_sample_rate_from_format(self):
        assert AudioRef(format="pcm_16000").sample_rate == 16000
        assert AudioRef(format="pcm_44100").sample_rate == 44100
        assert AudioRef(format="mp3_44100_128").sample_rate is None
        assert AudioRef(format="pcm_x").sample_rate is None


class TestTurnRecord:
    def test_is_frozen(self):
        turn = TurnRecord(turn_index=0, user_text="hi", assistant_text="hello")
        with pytest.raises(ValidationError):
            turn.user_text = "changed"

    def test_rejects_negative_index(self):
        with pytest.raises(ValidationError):
            TurnRecord(turn_index=-1, user_text="hi", assistant_text="hello")

    def test_to_messages(self):
        turn = TurnRecord(turn_index=3, user_text="hi", assistant_text="hello")
        assert turn.to_messages() == [
            Message(role="user", content="hi"),
            Message(role="assistant", content="hello"),
        ]

    def test_rejects_unknown_provider(self):
        with pytest.raises(ValidationError):
            TurnRecord(turn_index=0, user_text="a", assistant_text="b", provider="other")


class TestConversationSession:
    def test_continuation_follows_provider_id(self):
        session = ConversationSession(session_id="s1")
        assert not session.is_continuation
        session.provider_conversation_id = "conv-1"
        assert session.is_continuation


class TestSessionEvents:
    def test_discriminated_parse(self):
        event = session_event_adapter.validate_python(
            {"kind": "transcript", "session_id": "s1", "text": "hello"}
        )
        assert isinstance(event, Transcript)
        assert event.is_final

    def test_error_event_defaults(self):
        event = SessionError(session_id="s1", reason="boom")
        assert event.kind == EventKind.ERROR
        assert event.error_type == "VoiceBridgeError"

    def test_json_round_trip_keeps_audio(self):
        event = TurnCompleted(
            session_id="s1",
            user_text="hi",
            assistant_text="hello",
            audio_ref=AudioRef(data=b"\x01\x02"),
            provider="secondary",
        )
        parsed = session_event_adapter.validate_json(session_event_adapter.dump_json(event))
        assert parsed == event

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            session_event_adapter.validate_python({"kind": "nope", "session_id": "s1"})
