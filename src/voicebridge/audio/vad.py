"""
Amplitude-threshold Voice Activity Detection

Each frame is reduced to a single level: the mean of its byte frequency
spectrum (0-255), computed the same way a browser AnalyserNode does. The
level drives a small speaking / not-speaking state machine that emits
speech-start, speech-end and silence-timeout events.

Sampling is driven by frame arrival rather than a fixed timer, so the
detector stays aligned with the audio actually delivered.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

import numpy as np

from voicebridge.audio.capture import FrameSource, FrameSubscription, monotonic_ms
from voicebridge.errors import CaptureError

if TYPE_CHECKING:
    from voicebridge.config import Config

logger = logging.getLogger(__name__)


class VADEvent(str, Enum):
    """Events emitted by AmplitudeVAD."""

    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"
    SILENCE_TIMEOUT = "silence_timeout"


VADListener = Callable[[VADEvent], None]


@dataclass
class VADConfig:
    """Thresholds for amplitude VAD.

    silence_duration_ms differs by call site: 2000ms for passive detection,
    500ms for conversational turn-taking (see ``conversational``).
    """

    silence_threshold: float = 30.0  # 0-255 byte spectrum scale
    silence_duration_ms: int = 2000
    min_speech_duration_ms: int = 500
    settle_delay_ms: int = 100

    @classmethod
    def passive(cls, config: "Config | None" = None) -> "VADConfig":
        if config is None:
            return cls()
        return cls(
            silence_threshold=config.VAD_SILENCE_THRESHOLD,
            silence_duration_ms=config.VAD_SILENCE_DURATION_MS,
            min_speech_duration_ms=config.VAD_MIN_SPEECH_MS,
        )

    @classmethod
    def conversational(cls, config: "Config | None" = None) -> "VADConfig":
        base = cls.passive(config)
        base.silence_duration_ms = (
            config.VAD_CONVERSATIONAL_SILENCE_MS if config is not None else 500
        )
        return base


@dataclass
class VADState:
    """Per-stream detector state. Mutated only by AmplitudeVAD.sample."""

    is_speaking: bool = False
    speech_start_ms: float = 0.0
    last_above_threshold_ms: float = 0.0
    silence_timer: asyncio.TimerHandle | None = None


class SpectrumAnalyser:
    """Byte frequency spectrum in the manner of the Web Audio AnalyserNode.

    Keeps a rolling window of the last ``fft_size`` samples, applies a
    Blackman window, smooths magnitudes over time and maps decibels in
    [min_db, max_db] onto 0-255.
    """

    def __init__(
        self,
        fft_size: int = 2048,
        smoothing: float = 0.8,
        min_db: float = -100.0,
        max_db: float = -30.0,
    ):
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = np.blackman(fft_size)
        self._buffer = np.zeros(fft_size, dtype=np.float64)
        self._previous = np.zeros(fft_size // 2, dtype=np.float64)

    def reset(self) -> None:
        self._buffer[:] = 0.0
        self._previous[:] = 0.0

    def push(self, samples: np.ndarray) -> None:
        samples = np.asarray(samples, dtype=np.float64).ravel()
        if len(samples) >= self.fft_size:
            self._buffer[:] = samples[-self.fft_size:]
        else:
            self._buffer = np.concatenate((self._buffer[len(samples):], samples))

    def byte_frequency_data(self) -> np.ndarray:
        spectrum = np.fft.rfft(self._buffer * self._window)[: self.fft_size // 2]
        magnitude = np.abs(spectrum) / self.fft_size
        smoothed = self.smoothing * self._previous + (1 - self.smoothing) * magnitude
        self._previous = smoothed
        db = 20 * np.log10(np.maximum(smoothed, 1e-12))
        scaled = 255 * (db - self.min_db) / (self.max_db - self.min_db)
        return np.floor(np.clip(scaled, 0, 255)).astype(np.uint8)

    def level(self, samples: np.ndarray) -> float:
        """Push samples and return the mean byte spectrum level."""
        self.push(samples)
        return float(self.byte_frequency_data().mean())


class AmplitudeVAD:
    """Amplitude-threshold voice activity detector.

    Speech bursts shorter than ``min_speech_duration_ms`` are treated as
    noise: the detector drops back to not-speaking without emitting
    SPEECH_END. Once ``stop()`` is called no further events are delivered,
    including an already scheduled SILENCE_TIMEOUT.
    """

    def __init__(
        self,
        config: VADConfig | None = None,
        listener: VADListener | None = None,
        analyser: SpectrumAnalyser | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.config = config or VADConfig()
        self._listener = listener
        self._analyser = analyser or SpectrumAnalyser()
        self._clock = clock
        self._state = VADState()
        self._stopped = False
        self._source: FrameSource | None = None
        self._owns_source = False
        self._subscription: FrameSubscription | None = None
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> VADState:
        return self._state

    @property
    def is_speaking(self) -> bool:
        return self._state.is_speaking

    @property
    def stopped(self) -> bool:
        return self._stopped

    def set_listener(self, listener: VADListener | None) -> None:
        self._listener = listener

    async def start(self, source: FrameSource) -> None:
        """Begin sampling frames from ``source``.

        Opens the source if it is not running yet. A refused or missing
        device raises immediately; retrying is left to the caller.
        """
        if self._task is not None:
            logger.warning("VAD already started")
            return

        self.reset()
        self._source = source
        if not source.is_running:
            await source.start()
            self._owns_source = True

        self._subscription = source.subscribe()
        self._task = asyncio.create_task(self._sample_loop(self._subscription))

    async def _sample_loop(self, subscription: FrameSubscription) -> None:
        try:
            async for frame in subscription:
                if self._stopped:
                    break
                self.process_frame(frame.samples)
        except CaptureError as e:
            logger.error(f"VAD input failed: {e}")

    def process_frame(self, samples: np.ndarray, now_ms: float | None = None) -> float:
        """Compute the frame level and advance the state machine."""
        level = self._analyser.level(samples)
        self.sample(level, self._clock() if now_ms is None else now_ms)
        return level

    def sample(self, level: float, now_ms: float) -> None:
        """One detector step for a frame with the given mean level."""
        if self._stopped:
            return

        state = self._state
        config = self.config

        if level > config.silence_threshold:
            if not state.is_speaking:
                state.is_speaking = True
                state.speech_start_ms = now_ms
                self._cancel_silence_timer()
                self._emit(VADEvent.SPEECH_START)
            state.last_above_threshold_ms = now_ms
            return

        if not state.is_speaking:
            return

        silence_ms = now_ms - state.last_above_threshold_ms
        if silence_ms < config.silence_duration_ms:
            return

        speech_ms = state.last_above_threshold_ms - state.speech_start_ms
        state.is_speaking = False
        if speech_ms >= config.min_speech_duration_ms:
            self._emit(VADEvent.SPEECH_END)
            self._schedule_silence_timeout()
        else:
            logger.debug(f"Discarding {speech_ms:.0f}ms burst as noise")

    def _schedule_silence_timeout(self) -> None:
        self._cancel_silence_timer()
        loop = asyncio.get_running_loop()
        self._state.silence_timer = loop.call_later(
            self.config.settle_delay_ms / 1000, self._fire_silence_timeout
        )

    def _fire_silence_timeout(self) -> None:
        self._state.silence_timer = None
        self._emit(VADEvent.SILENCE_TIMEOUT)

    def _cancel_silence_timer(self) -> None:
        if self._state.silence_timer is not None:
            self._state.silence_timer.cancel()
            self._state.silence_timer = None

    def _emit(self, event: VADEvent) -> None:
        if self._stopped or self._listener is None:
            return
        try:
            self._listener(event)
        except Exception as e:
            logger.error(f"Error in VAD listener for {event.value}: {e}")

    def reset(self) -> None:
        """Clear detector state and re-arm sampling."""
        self._cancel_silence_timer()
        self._state = VADState()
        self._analyser.reset()
        self._stopped = False

    async def stop(self) -> None:
        """Halt sampling permanently and release the stream."""
        self._stopped = True
        self._cancel_silence_timer()
        self._state = VADState()

        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._source is not None and self._owns_source:
            await self._source.stop()
        self._source = None
        self._owns_source = False
