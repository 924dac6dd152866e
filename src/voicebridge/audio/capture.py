"""
Audio Frame Sources

Provides MicCapture for live microphone input and StreamedFrameSource for
audio pushed in from elsewhere (a browser streaming PCM over a socket).
Both fan frames out to any number of subscribers.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import numpy as np

from voicebridge.audio.pcm import pcm16_to_float
from voicebridge.errors import CaptureError, PermissionDenied

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class AudioCaptureConfig:
    """Configuration for audio capture."""

    sample_rate: int = 16000
    channels: int = 1
    block_size: int = 1024  # Small buffer for low latency
    device_index: int | None = None


@dataclass
class AudioFrame:
    """One block of mono float32 samples."""

    samples: np.ndarray
    sample_rate: int
    timestamp_ms: float = field(default_factory=monotonic_ms)

    @property
    def duration_ms(self) -> float:
        return len(self.samples) * 1000 / self.sample_rate


@dataclass
class Utterance:
    """One bounded span of detected speech.

    Opened on speech-start and sealed on speech-end; once sealed no further
    chunks are accepted.
    """

    start_ms: float
    end_ms: float | None = None
    chunks: list[bytes] = field(default_factory=list)

    @property
    def is_sealed(self) -> bool:
        return self.end_ms is not None

    def append(self, chunk: bytes) -> bool:
        if self.is_sealed:
            return False
        self.chunks.append(chunk)
        return True

    def seal(self, end_ms: float) -> None:
        if self.end_ms is None:
            self.end_ms = end_ms

    @property
    def audio(self) -> bytes:
        return b"".join(self.chunks)

    @property
    def duration_ms(self) -> float:
        if self.end_ms is None:
            return 0.0
        return self.end_ms - self.start_ms


class FrameSubscription:
    """Async iterator over frames published by a FrameSource.

    Iteration raises the source's failure if it fails, and ends when the
    source stops or the subscription is closed.
    """

    def __init__(self, source: "FrameSource"):
        self._source = source
        self._queue: asyncio.Queue[AudioFrame | BaseException | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, item: AudioFrame | BaseException | None) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    def __aiter__(self) -> "FrameSubscription":
        return self

    async def __anext__(self) -> AudioFrame:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None or self._closed:
            self._closed = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._source._unsubscribe(self)
        # Wake a pending __anext__
        self._queue.put_nowait(None)


class FrameSource(ABC):
    """Abstract base for audio frame sources."""

    def __init__(self) -> None:
        self._subscribers: list[FrameSubscription] = []

    def subscribe(self) -> FrameSubscription:
        subscription = FrameSubscription(self)
        self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: FrameSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def _publish(self, frame: AudioFrame) -> None:
        for subscription in list(self._subscribers):
            subscription.put(frame)

    def _fail(self, error: BaseException) -> None:
        for subscription in list(self._subscribers):
            subscription.put(error)

    def _finish(self) -> None:
        for subscription in list(self._subscribers):
            subscription.put(None)

    @abstractmethod
    async def start(self) -> None:
        """Open the device (or channel) and begin publishing frames."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop publishing frames and release the device."""
        ...

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if source is currently running."""
        ...


def _is_permission_error(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in ("permission", "denied", "not authorized"))


class MicCapture(FrameSource):
    """Microphone capture using sounddevice."""

    def __init__(self, config: AudioCaptureConfig | None = None):
        super().__init__()
        self.config = config or AudioCaptureConfig()
        self._stream = None
        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Initialize and start microphone stream."""
        if self._running:
            return

        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise CaptureError(f"sounddevice is not available: {e}") from e

        self._loop = asyncio.get_running_loop()
        # A stream that ended on its own is still open
        self._close_stream()

        try:
            self._stream = sd.InputStream(
                samplerate=self.config.sample_rate,
                channels=self.config.channels,
                dtype="float32",
                blocksize=self.config.block_size,
                callback=self._audio_callback,
                finished_callback=self._finished_callback,
                device=self.config.device_index,
            )
            self._running = True
            self._stream.start()
        except sd.PortAudioError as e:
            self._running = False
            self._stream = None
            if _is_permission_error(e):
                raise PermissionDenied(f"Microphone access denied: {e}") from e
            raise CaptureError(f"Could not open microphone: {e}") from e

        logger.info(
            f"Microphone capture started (sample_rate={self.config.sample_rate}, "
            f"block_size={self.config.block_size})"
        )

    def _audio_callback(self, indata, frames, time_info, status):
        """Callback for sounddevice stream (runs on the PortAudio thread)."""
        if status:
            logger.warning(f"Audio callback status: {status}")

        if self._running and self._loop:
            frame = AudioFrame(
                samples=indata[:, 0].copy(),
                sample_rate=self.config.sample_rate,
            )
            self._loop.call_soon_threadsafe(self._publish, frame)

    def _finished_callback(self) -> None:
        # Stream ended without stop() being called
        if self._running and self._loop:
            self._running = False
            self._loop.call_soon_threadsafe(
                self._fail, CaptureError("Microphone stream ended unexpectedly")
            )

    async def stop(self) -> None:
        """Stop microphone stream."""
        was_running = self._running
        self._running = False
        self._close_stream()
        self._finish()
        if was_running:
            logger.info("Microphone capture stopped")

    def _close_stream(self) -> None:
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        stream.stop()
        stream.close()


class StreamedFrameSource(FrameSource):
    """Frame source fed with PCM16 chunks pushed by a remote client."""

    def __init__(self, sample_rate: int = 16000):
        super().__init__()
        self.sample_rate = sample_rate
        self._running = False
        self._chunks_received = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def chunks_received(self) -> int:
        return self._chunks_received

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False
        self._finish()

    def push_pcm(self, data: bytes) -> None:
        """Publish one PCM16 chunk as a frame. Ignored while stopped."""
        if not self._running or not data:
            return
        self._chunks_received += 1
        self._publish(AudioFrame(samples=pcm16_to_float(data), sample_rate=self.sample_rate))

    def push_samples(self, samples: np.ndarray) -> None:
        if not self._running:
            return
        self._publish(
            AudioFrame(samples=np.asarray(samples, dtype=np.float32), sample_rate=self.sample_rate)
        )

    def fail(self, error: BaseException) -> None:
        """Fail all current subscribers (used when the upstream channel breaks)."""
        self._running = False
        self._fail(error)
