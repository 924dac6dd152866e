"""
Turn Session

The turn-taking state machine for one conversation:

    IDLE -> CAPTURING -> AWAITING_RESPONSE -> PLAYING -> IDLE

While capturing, every frame is forwarded to the optional transport and fed
to the VAD. Speech-start opens an utterance, speech-end seals it, and the
silence timeout that follows hands the sealed utterance to the response
path: transcribe, resolve, play.

Cancellation is generation based. ``stop()`` bumps the generation; work that
was already in flight is allowed to finish, but its results are discarded
when the generation no longer matches.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from voicebridge.audio.capture import FrameSource, FrameSubscription, Utterance, monotonic_ms
from voicebridge.audio.pcm import float_to_pcm16
from voicebridge.audio.playback import PlaybackSink
from voicebridge.audio.transport import AudioChunkTransport
from voicebridge.audio.vad import AmplitudeVAD, VADEvent
from voicebridge.contracts import (
    ModeChanged,
    ProcessingStarted,
    SessionError,
    SpeechDetected,
    StateChanged,
    Transcript,
    TurnCompleted,
    TurnState,
)
from voicebridge.core.events import EventChannel
from voicebridge.core.resolver import ResponseResolver
from voicebridge.errors import CaptureError, PermissionDenied, TranscriptionError

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, sample_rate: int) -> str: ...


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff for opening the audio source."""

    attempts: int = 3
    base_delay_ms: int = 500
    backoff: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return (self.base_delay_ms / 1000) * (self.backoff ** (attempt - 1))


class TurnSession:
    """One conversation's capture / respond / play loop.

    Only one turn is in flight at a time. Every failure is reported as a
    SessionError event and leaves the session IDLE and reusable.
    """

    def __init__(
        self,
        session_id: str,
        source: FrameSource,
        vad: AmplitudeVAD,
        resolver: ResponseResolver,
        transcriber: Transcriber | None = None,
        player: PlaybackSink | None = None,
        transport: AudioChunkTransport | None = None,
        events: EventChannel | None = None,
        continuous: bool = False,
        retry_policy: RetryPolicy | None = None,
        sample_rate: int = 16000,
    ):
        self.session_id = session_id
        self.events = events or EventChannel()
        self.continuous = continuous
        self.retry_policy = retry_policy or RetryPolicy()
        self.sample_rate = sample_rate

        self._source = source
        self._vad = vad
        self._resolver = resolver
        self._transcriber = transcriber
        self._player = player
        self._transport = transport

        self._state = TurnState.IDLE
        self._generation = 0
        self._utterance: Utterance | None = None
        self._subscription: FrameSubscription | None = None
        self._vad_events: asyncio.Queue[tuple[int, VADEvent]] = asyncio.Queue()
        self._capture_task: asyncio.Task | None = None
        self._vad_task: asyncio.Task | None = None
        self._response_task: asyncio.Task | None = None

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def utterance(self) -> Utterance | None:
        return self._utterance

    # ─────────────────────────────────────────────────────────────────────
    # Capture
    # ─────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Open the source and begin capturing the next utterance.

        Raises CaptureError (or PermissionDenied) if the source cannot be
        opened within the retry policy.
        """
        if self._state is not TurnState.IDLE:
            logger.warning(f"Session {self.session_id} already active ({self._state.value})")
            return

        self._generation += 1
        generation = self._generation
        await self._set_state(TurnState.CAPTURING)

        try:
            await self._open_source()
        except CaptureError as e:
            await self._fail(e, generation)
            raise

        if generation != self._generation:
            return

        queue: asyncio.Queue[tuple[int, VADEvent]] = asyncio.Queue()
        self._vad_events = queue
        self._utterance = None
        self._vad.reset()
        self._vad.set_listener(lambda event: self._on_vad_event(event, generation, queue))

        await self.events.emit(ModeChanged(session_id=self.session_id, mode="listening"))

        self._subscription = self._source.subscribe()
        self._capture_task = asyncio.create_task(self._capture_loop(generation))
        self._vad_task = asyncio.create_task(self._vad_event_loop(generation))

    async def _open_source(self) -> None:
        policy = self.retry_policy
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._source.start()
                return
            except PermissionDenied:
                raise
            except CaptureError as e:
                if attempt >= policy.attempts:
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"Capture open attempt {attempt} failed ({e}), retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _capturing(self, generation: int) -> bool:
        return self._is_current(generation) and self._state is TurnState.CAPTURING

    async def _capture_loop(self, generation: int) -> None:
        while self._capturing(generation):
            subscription = self._subscription
            if subscription is None:
                return
            try:
                async for frame in subscription:
                    if not self._capturing(generation):
                        return
                    self._handle_frame(frame.samples)
            except CaptureError as e:
                subscription.close()
                if not self._capturing(generation):
                    return
                logger.warning(f"Capture failed mid-stream: {e}")
                try:
                    await self._open_source()
                except CaptureError as reopen_error:
                    await self._fail(reopen_error, generation)
                    return
                if not self._capturing(generation):
                    return
                # The open utterance is incomplete; start clean
                self._utterance = None
                self._vad.reset()
                self._subscription = self._source.subscribe()
                continue

            if self._capturing(generation):
                logger.info(f"Audio source ended for session {self.session_id}")
                await self._cancel_capture()
                await self._set_state(TurnState.IDLE)
            return

    def _handle_frame(self, samples) -> None:
        if self._transport is not None:
            self._transport.on_frame(samples)

        # The VAD listener may open or seal the utterance for this frame
        self._vad.process_frame(samples)

        if self._utterance is not None and not self._utterance.is_sealed:
            self._utterance.append(float_to_pcm16(samples))

    def _on_vad_event(
        self,
        event: VADEvent,
        generation: int,
        queue: asyncio.Queue[tuple[int, VADEvent]],
    ) -> None:
        """VAD listener. Runs inside process_frame or the settle timer."""
        if not self._capturing(generation):
            return

        now = monotonic_ms()
        if event is VADEvent.SPEECH_START:
            previous = self._utterance
            if previous is None:
                self._utterance = Utterance(start_ms=now)
            elif previous.is_sealed:
                # Speech resumed before the settle delay ran out
                self._utterance = Utterance(start_ms=previous.start_ms, chunks=list(previous.chunks))
        elif event is VADEvent.SPEECH_END:
            if self._utterance is not None:
                self._utterance.seal(now)

        queue.put_nowait((generation, event))

    async def _vad_event_loop(self, generation: int) -> None:
        queue = self._vad_events
        while self._capturing(generation):
            event_generation, event = await queue.get()
            if event_generation != generation:
                continue
            await self._handle_vad_event(event, generation)

    async def _handle_vad_event(self, event: VADEvent, generation: int) -> None:
        if not self._capturing(generation):
            return

        if event is VADEvent.SPEECH_START:
            await self.events.emit(SpeechDetected(session_id=self.session_id))

        elif event is VADEvent.SILENCE_TIMEOUT:
            utterance = self._utterance
            if utterance is None or not utterance.is_sealed or not utterance.chunks:
                logger.debug("Silence timeout without a sealed utterance, ignoring")
                return
            await self._end_capture()
            self._dispatch(generation, utterance=utterance)

    async def _end_capture(self) -> None:
        """Stop consuming frames and hand over to the response path."""
        self._utterance = None
        self._vad.set_listener(None)
        self._vad.reset()
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        await self._set_state(TurnState.AWAITING_RESPONSE)
        await self.events.emit(ProcessingStarted(session_id=self.session_id))

    async def _cancel_capture(self) -> None:
        self._vad.set_listener(None)
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        current = asyncio.current_task()
        for task in (self._capture_task, self._vad_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._capture_task = None
        self._vad_task = None

    # ─────────────────────────────────────────────────────────────────────
    # Response path
    # ─────────────────────────────────────────────────────────────────────

    async def submit_text(self, text: str) -> bool:
        """Run a text-only turn. Returns False if a turn is already in flight."""
        if not text.strip():
            logger.debug("Ignoring empty text submission")
            return False
        if not await self._take_turn():
            return False
        self._dispatch(self._generation, text=text)
        return True

    async def feed_utterance(self, utterance: Utterance) -> bool:
        """Respond to an utterance sealed outside this session."""
        if not utterance.is_sealed:
            utterance.seal(monotonic_ms())
        if not await self._take_turn():
            return False
        self._dispatch(self._generation, utterance=utterance)
        return True

    async def _take_turn(self) -> bool:
        if self._state in (TurnState.AWAITING_RESPONSE, TurnState.PLAYING):
            logger.warning(f"Session {self.session_id} busy ({self._state.value}), turn rejected")
            return False

        if self._state is TurnState.CAPTURING:
            await self._cancel_capture()
            self._utterance = None
            self._vad.reset()
        else:
            self._generation += 1

        await self._set_state(TurnState.AWAITING_RESPONSE)
        await self.events.emit(ProcessingStarted(session_id=self.session_id))
        return True

    def _dispatch(
        self,
        generation: int,
        utterance: Utterance | None = None,
        text: str | None = None,
    ) -> None:
        self._response_task = asyncio.create_task(
            self._respond(generation, utterance=utterance, text=text)
        )

    async def wait_for_response(self) -> None:
        """Wait for the in-flight response task, if any."""
        task = self._response_task
        if task is not None and task is not asyncio.current_task():
            await asyncio.shield(task)

    async def _respond(
        self,
        generation: int,
        utterance: Utterance | None = None,
        text: str | None = None,
    ) -> None:
        try:
            if text is None:
                text = await self._transcribe(utterance)
                if not self._is_current(generation):
                    logger.debug(f"Discarding stale transcript for session {self.session_id}")
                    return
                if not text.strip():
                    logger.info("Empty transcript, no turn taken")
                    await self._finish_turn(generation)
                    return

            await self.events.emit(Transcript(session_id=self.session_id, text=text))

            resolution = await self._resolver.resolve(
                self.session_id, text, is_current=lambda: self._is_current(generation)
            )
            if not self._is_current(generation):
                logger.debug(f"Discarding stale response for session {self.session_id}")
                return

            await self.events.emit(
                TurnCompleted(
                    session_id=self.session_id,
                    user_text=text,
                    assistant_text=resolution.text,
                    audio_ref=resolution.audio_ref,
                    provider=resolution.provider,
                    provider_conversation_id=resolution.provider_conversation_id,
                )
            )

            audio = resolution.audio_ref
            if self._player is not None and audio is not None and not audio.is_empty:
                await self._set_state(TurnState.PLAYING)
                await self.events.emit(ModeChanged(session_id=self.session_id, mode="speaking"))
                await self._player.play(audio)
                if not self._is_current(generation):
                    return

            await self._finish_turn(generation)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._is_current(generation):
                await self._fail(e, generation)
            else:
                logger.debug(f"Ignoring error from stale turn: {e}")

    async def _transcribe(self, utterance: Utterance | None) -> str:
        if utterance is None:
            raise TranscriptionError("No utterance to transcribe")
        if self._transcriber is None:
            raise TranscriptionError("No transcriber configured")
        return await self._transcriber.transcribe(utterance.audio, self.sample_rate)

    async def _finish_turn(self, generation: int) -> None:
        await self._set_state(TurnState.IDLE)
        if self.continuous and self._is_current(generation):
            try:
                await self.start()
            except CaptureError as e:
                logger.error(f"Could not resume capture: {e}")
            return
        await self.events.emit(ModeChanged(session_id=self.session_id, mode="listening"))

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    async def stop(self) -> None:
        """Stop capture and playback and return to IDLE.

        A provider call already in flight is not cancelled; its result is
        discarded when it arrives.
        """
        self._generation += 1
        await self._cancel_capture()
        self._utterance = None
        await self._vad.stop()

        if self._source.is_running:
            await self._source.stop()

        if self._player is not None:
            await self._player.stop()

        await self._set_state(TurnState.IDLE)

    async def _fail(self, error: BaseException, generation: int) -> None:
        logger.error(f"Session {self.session_id} error: {error}")
        await self._cancel_capture()
        self._utterance = None
        await self._set_state(TurnState.IDLE)
        await self.events.emit(
            SessionError(
                session_id=self.session_id,
                reason=str(error),
                error_type=type(error).__name__,
            )
        )

    async def _set_state(self, state: TurnState) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        logger.debug(f"Session {self.session_id}: {previous.value} -> {state.value}")
        await self.events.emit(
            StateChanged(session_id=self.session_id, previous=previous, current=state)
        )
