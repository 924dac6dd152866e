"""Tests for the turn-taking session."""

import asyncio

import numpy as np
import pytest

from voicebridge.audio.capture import FrameSource, StreamedFrameSource, Utterance
from voicebridge.audio.pcm import float_to_pcm16
from voicebridge.audio.playback import PlaybackSink
from voicebridge.audio.transport import AudioChunkTransport
from voicebridge.audio.vad import VADEvent
from voicebridge.contracts import AudioRef, EventKind, TurnState
from voicebridge.core.continuity import ConversationStore
from voicebridge.core.resolver import PrimaryReply, ResponseResolver
from voicebridge.core.turn_session import RetryPolicy, TurnSession
from voicebridge.errors import CaptureError, PermissionDenied, TranscriptionError

FAST_RETRY = RetryPolicy(attempts=3, base_delay_ms=1)


class MockVAD:
    """VAD driven by the test instead of by audio levels."""

    def __init__(self):
        self.listener = None
        self.frames = 0
        self.resets = 0
        self.stopped = False

    def set_listener(self, listener):
        self.listener = listener

    def reset(self):
        self.resets += 1
        self.stopped = False

    def process_frame(self, samples, now_ms=None):
        self.frames += 1
        return 0.0

    async def stop(self):
        self.stopped = True

    def fire(self, event: VADEvent):
        if self.listener is not None:
            self.listener(event)


class MockTranscriber:
    def __init__(self, text: str = "hello", error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls: list[tuple[bytes, int]] = []

    async def transcribe(self, audio, sample_rate):
        self.calls.append((audio, sample_rate))
        if self.error is not None:
            raise self.error
        return self.text


class MockPrimary:
    def __init__(self, text: str = "Hi there", gate: asyncio.Event | None = None):
        self.text = text
        self.gate = gate
        self.calls: list[str] = []

    async def converse(self, text, conversation_id=None):
        self.calls.append(text)
        if self.gate is not None:
            await self.gate.wait()
        return PrimaryReply(self.text, "conv-1", AudioRef(data=b"\x00\x00" * 8))


class MockPlayer(PlaybackSink):
    def __init__(self):
        self.played: list[AudioRef] = []
        self.stops = 0

    async def play(self, audio):
        self.played.append(audio)

    async def stop(self):
        self.stops += 1


class FlakySource(StreamedFrameSource):
    """Source that fails to open a fixed number of times."""

    def __init__(self, failures: int, error: Exception | None = None):
        super().__init__()
        self.failures = failures
        self.error = error or CaptureError("device busy")
        self.attempts = 0

    async def start(self):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        await super().start()


class MockChannel:
    def __init__(self):
        self.sent = []

    @property
    def connected(self):
        return True

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        pass

    async def __aiter__(self):
        return
        yield


class EventLog:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events if e.kind != EventKind.STATE_CHANGED]

    def states(self) -> list[TurnState]:
        return [e.current for e in self.events if e.kind == EventKind.STATE_CHANGED]

    def of(self, kind: EventKind):
        return [e for e in self.events if e.kind == kind]


async def settle(seconds: float = 0.02):
    await asyncio.sleep(seconds)


def make_session(
    source: FrameSource | None = None,
    transcriber: MockTranscriber | None = None,
    primary: MockPrimary | None = None,
    store: ConversationStore | None = None,
    **kwargs,
) -> tuple[TurnSession, MockVAD, EventLog]:
    vad = MockVAD()
    store = store if store is not None else ConversationStore()
    resolver = ResponseResolver(store, primary=primary or MockPrimary())
    session = TurnSession(
        "s1",
        source or StreamedFrameSource(),
        vad,
        resolver,
        transcriber=transcriber or MockTranscriber(),
        retry_policy=kwargs.pop("retry_policy", FAST_RETRY),
        **kwargs,
    )
    log = EventLog()
    session.events.subscribe(log)
    return session, vad, log


class TestStart:
    @pytest.mark.asyncio
    async def test_start_begins_capturing(self):
        source = StreamedFrameSource()
        session, vad, log = make_session(source)

        await session.start()

        assert session.state is TurnState.CAPTURING
        assert source.is_running
        assert session.generation == 1
        assert log.of(EventKind.MODE_CHANGED)[0].mode == "listening"
        await session.stop()

    @pytest.mark.asyncio
    async def test_start_while_active_is_ignored(self):
        session, _, _ = make_session()
        await session.start()
        await session.start()

        assert session.generation == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_transient_open_failure_is_retried(self):
        source = FlakySource(failures=2)
        session, _, _ = make_session(source)

        await session.start()

        assert source.attempts == 3
        assert session.state is TurnState.CAPTURING
        await session.stop()

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        source = FlakySource(failures=5)
        session, _, log = make_session(source)

        with pytest.raises(CaptureError):
            await session.start()

        assert source.attempts == 3
        assert session.state is TurnState.IDLE
        assert log.of(EventKind.ERROR)[0].error_type == "CaptureError"

    @pytest.mark.asyncio
    async def test_permission_denied_not_retried(self):
        source = FlakySource(failures=5, error=PermissionDenied("Microphone access denied"))
        session, _, log = make_session(source)

        with pytest.raises(PermissionDenied):
            await session.start()

        assert source.attempts == 1
        assert session.state is TurnState.IDLE
        assert log.of(EventKind.ERROR)[0].error_type == "PermissionDenied"


class TestVoiceTurn:
    @pytest.mark.asyncio
    async def test_full_turn(self):
        source = StreamedFrameSource()
        transcriber = MockTranscriber("What's up?")
        player = MockPlayer()
        session, vad, log = make_session(source, transcriber=transcriber, player=player)
        await session.start()

        speech = np.full(160, 0.5, dtype=np.float32)
        vad.fire(VADEvent.SPEECH_START)
        source.push_samples(speech)
        await settle()
        vad.fire(VADEvent.SPEECH_END)
        vad.fire(VADEvent.SILENCE_TIMEOUT)
        await settle()
        await session.wait_for_response()

        assert transcriber.calls == [(float_to_pcm16(speech), 16000)]
        assert log.kinds() == [
            EventKind.MODE_CHANGED,
            EventKind.SPEECH_DETECTED,
            EventKind.PROCESSING_STARTED,
            EventKind.TRANSCRIPT,
            EventKind.TURN_COMPLETED,
            EventKind.MODE_CHANGED,
            EventKind.MODE_CHANGED,
        ]
        completed = log.of(EventKind.TURN_COMPLETED)[0]
        assert completed.user_text == "What's up?"
        assert completed.assistant_text == "Hi there"
        assert completed.provider_conversation_id == "conv-1"
        assert len(player.played) == 1
        assert log.states() == [
            TurnState.CAPTURING,
            TurnState.AWAITING_RESPONSE,
            TurnState.PLAYING,
            TurnState.IDLE,
        ]
        assert session.state is TurnState.IDLE

    @pytest.mark.asyncio
    async def test_frames_before_speech_not_captured(self):
        source = StreamedFrameSource()
        transcriber = MockTranscriber()
        session, vad, _ = make_session(source, transcriber=transcriber)
        await session.start()

        source.push_samples(np.zeros(160, dtype=np.float32))
        await settle()
        vad.fire(VADEvent.SPEECH_START)
        source.push_samples(np.full(160, 0.1, dtype=np.float32))
        await settle()
        vad.fire(VADEvent.SPEECH_END)
        source.push_samples(np.zeros(160, dtype=np.float32))
        await settle()
        vad.fire(VADEvent.SILENCE_TIMEOUT)
        await settle()
        await session.wait_for_response()

        assert vad.frames == 3
        assert len(transcriber.calls[0][0]) == 320

    @pytest.mark.asyncio
    async def test_resumed_speech_extends_utterance(self):
        source = StreamedFrameSource()
        transcriber = MockTranscriber()
        session, vad, _ = make_session(source, transcriber=transcriber)
        await session.start()

        vad.fire(VADEvent.SPEECH_START)
        source.push_samples(np.full(160, 0.1, dtype=np.float32))
        await settle()
        vad.fire(VADEvent.SPEECH_END)
        vad.fire(VADEvent.SPEECH_START)
        source.push_samples(np.full(160, 0.2, dtype=np.float32))
        await settle()
        vad.fire(VADEvent.SPEECH_END)
        vad.fire(VADEvent.SILENCE_TIMEOUT)
        await settle()
        await session.wait_for_response()

        assert len(transcriber.calls) == 1
        assert len(transcriber.calls[0][0]) == 640

    @pytest.mark.asyncio
    async def test_timeout_without_speech_is_ignored(self):
        session, vad, log = make_session()
        await session.start()

        vad.fire(VADEvent.SILENCE_TIMEOUT)
        await settle()

        assert session.state is TurnState.CAPTURING
        assert EventKind.PROCESSING_STARTED not in log.kinds()
        await session.stop()

    @pytest.mark.asyncio
    async def test_empty_transcript_takes_no_turn(self):
        primary = MockPrimary()
        session, _, log = make_session(transcriber=MockTranscriber("  "), primary=primary)
        utterance = Utterance(start_ms=0.0, chunks=[b"\x00\x00"])

        assert await session.feed_utterance(utterance)
        await session.wait_for_response()

        assert primary.calls == []
        assert EventKind.TURN_COMPLETED not in log.kinds()
        assert session.state is TurnState.IDLE

    @pytest.mark.asyncio
    async def test_transcription_error_reported(self):
        session, _, log = make_session(transcriber=MockTranscriber(error=TranscriptionError("stt down")))

        await session.feed_utterance(Utterance(start_ms=0.0, chunks=[b"\x00\x00"]))
        await session.wait_for_response()

        errors = log.of(EventKind.ERROR)
        assert errors[0].error_type == "TranscriptionError"
        assert errors[0].reason == "stt down"
        assert session.state is TurnState.IDLE

        assert await session.submit_text("still works")
        await session.wait_for_response()
        assert log.of(EventKind.TURN_COMPLETED)


class TestTextTurn:
    @pytest.mark.asyncio
    async def test_submit_text(self):
        primary = MockPrimary("Sure")
        session, _, log = make_session(primary=primary)

        assert await session.submit_text("Book a table")
        await session.wait_for_response()

        assert primary.calls == ["Book a table"]
        assert log.of(EventKind.TRANSCRIPT)[0].text == "Book a table"
        assert log.of(EventKind.TURN_COMPLETED)[0].assistant_text == "Sure"

    @pytest.mark.asyncio
    async def test_blank_text_rejected(self):
        session, _, _ = make_session()
        assert not await session.submit_text("  ")
        assert session.state is TurnState.IDLE

    @pytest.mark.asyncio
    async def test_second_turn_rejected_while_awaiting(self):
        gate = asyncio.Event()
        session, _, _ = make_session(primary=MockPrimary(gate=gate))

        assert await session.submit_text("first")
        assert not await session.submit_text("second")
        assert session.state is TurnState.AWAITING_RESPONSE

        gate.set()
        await session.wait_for_response()
        assert session.state is TurnState.IDLE

    @pytest.mark.asyncio
    async def test_text_interrupts_capture(self):
        source = StreamedFrameSource()
        session, vad, _ = make_session(source)
        await session.start()

        assert await session.submit_text("typed instead")
        source.push_samples(np.zeros(160, dtype=np.float32))
        await session.wait_for_response()
        await settle()

        assert vad.frames == 0
        assert session.state is TurnState.IDLE


class TestCancellation:
    @pytest.mark.asyncio
    async def test_stop_discards_in_flight_response(self):
        gate = asyncio.Event()
        player = MockPlayer()
        session, _, log = make_session(primary=MockPrimary(gate=gate), player=player)

        await session.submit_text("hello")
        await settle()
        await session.stop()
        gate.set()
        await session.wait_for_response()

        assert log.of(EventKind.TURN_COMPLETED) == []
        assert player.played == []
        assert session.state is TurnState.IDLE

    @pytest.mark.asyncio
    async def test_stale_reply_not_recorded(self):
        gate = asyncio.Event()
        store = ConversationStore()
        session, _, _ = make_session(primary=MockPrimary(gate=gate), store=store)

        await session.submit_text("stale question")
        await settle()
        await session.stop()
        gate.set()
        await session.wait_for_response()

        assert store.get("s1").turns == []
        assert store.get_provider_conversation_id("s1") is None

    @pytest.mark.asyncio
    async def test_stop_releases_source_and_vad(self):
        source = StreamedFrameSource()
        player = MockPlayer()
        session, vad, _ = make_session(source, player=player)
        await session.start()

        await session.stop()

        assert not source.is_running
        assert vad.stopped
        assert player.stops == 1
        assert session.generation == 2

    @pytest.mark.asyncio
    async def test_speech_after_stop_ignored(self):
        session, vad, log = make_session()
        await session.start()
        listener = vad.listener
        await session.stop()

        listener(VADEvent.SPEECH_START)
        await settle()

        assert EventKind.SPEECH_DETECTED not in log.kinds()
        assert session.utterance is None


class TestContinuousMode:
    @pytest.mark.asyncio
    async def test_resumes_capture_after_turn(self):
        source = StreamedFrameSource()
        session, _, log = make_session(source, continuous=True)

        await session.submit_text("hello")
        await session.wait_for_response()

        assert session.state is TurnState.CAPTURING
        assert source.is_running
        await session.stop()

    @pytest.mark.asyncio
    async def test_mid_stream_failure_reopens_source(self):
        source = StreamedFrameSource()
        session, vad, log = make_session(source)
        await session.start()

        source.fail(CaptureError("socket dropped"))
        await settle()
        source.push_samples(np.zeros(160, dtype=np.float32))
        await settle()

        assert session.state is TurnState.CAPTURING
        assert vad.frames == 1
        assert log.of(EventKind.ERROR) == []
        await session.stop()

    @pytest.mark.asyncio
    async def test_source_end_returns_to_idle(self):
        source = StreamedFrameSource()
        session, _, _ = make_session(source)
        await session.start()

        await source.stop()
        await settle()

        assert session.state is TurnState.IDLE


class TestTransportForwarding:
    @pytest.mark.asyncio
    async def test_frames_forwarded_while_capturing(self):
        channel = MockChannel()
        transport = AudioChunkTransport(channel)
        source = StreamedFrameSource()
        session, _, _ = make_session(source, transport=transport)
        await session.start()

        samples = np.full(160, 0.25, dtype=np.float32)
        source.push_samples(samples)
        await settle()

        assert channel.sent == [float_to_pcm16(samples)]
        await session.stop()
