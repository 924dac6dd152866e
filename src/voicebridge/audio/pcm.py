"""PCM helpers - float frames to 16-bit little-endian PCM and back."""

import io
import wave

import numpy as np


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples to signed 16-bit little-endian PCM.

    Samples are hard-clamped to [-1.0, 1.0]. Negative values scale by 0x8000,
    positive by 0x7FFF, and the result truncates toward zero, so 1.0 maps to
    0x7FFF, -1.0 to 0x8000 and 0.0 to 0x0000.
    """
    clamped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clamped < 0, clamped * 0x8000, clamped * 0x7FFF)
    return np.trunc(scaled).astype("<i2").tobytes()


def pcm16_to_float(data: bytes) -> np.ndarray:
    """Decode signed 16-bit little-endian PCM into float32 samples in [-1, 1)."""
    usable = len(data) - (len(data) % 2)
    pcm = np.frombuffer(data[:usable], dtype="<i2")
    return pcm.astype(np.float32) / 32768.0


def pcm16_to_wav(data: bytes, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Wrap raw PCM16 in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(data)
    return buffer.getvalue()
