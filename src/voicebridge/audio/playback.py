"""Playback sinks for synthesized replies."""

import asyncio
import logging
from abc import ABC, abstractmethod

from voicebridge.audio.pcm import pcm16_to_float
from voicebridge.contracts import AudioRef
from voicebridge.errors import PlaybackError

logger = logging.getLogger(__name__)


class PlaybackSink(ABC):
    """Plays an AudioRef to completion."""

    @abstractmethod
    async def play(self, audio: AudioRef) -> None:
        """Play audio, returning when playback finishes or is stopped."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Abort any playback in progress."""
        ...


class SoundDevicePlayer(PlaybackSink):
    """Plays PCM16 audio through the default output device."""

    def __init__(self, device_index: int | None = None):
        self.device_index = device_index
        self._playing = False

    @property
    def is_playing(self) -> bool:
        return self._playing

    async def play(self, audio: AudioRef) -> None:
        if audio.data is None:
            raise PlaybackError(f"Cannot play remote audio ({audio.url}) locally")

        sample_rate = audio.sample_rate
        if sample_rate is None:
            raise PlaybackError(f"Unsupported audio format: {audio.format}")

        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise PlaybackError(f"sounddevice is not available: {e}") from e

        samples = pcm16_to_float(audio.data)
        if len(samples) == 0:
            return

        self._playing = True
        try:
            sd.play(samples, samplerate=sample_rate, device=self.device_index)
            await asyncio.to_thread(sd.wait)
        except sd.PortAudioError as e:
            raise PlaybackError(f"Playback failed: {e}") from e
        finally:
            self._playing = False

        logger.debug(f"Played {len(samples) / sample_rate:.1f}s of audio")

    async def stop(self) -> None:
        if not self._playing:
            return
        try:
            import sounddevice as sd
        except (ImportError, OSError):
            return
        sd.stop()
        self._playing = False
