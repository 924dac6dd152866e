"""Audio capture, voice activity detection, transport and playback."""

from voicebridge.audio.capture import (
    AudioCaptureConfig,
    AudioFrame,
    FrameSource,
    MicCapture,
    StreamedFrameSource,
    Utterance,
)
from voicebridge.audio.pcm import float_to_pcm16, pcm16_to_float, pcm16_to_wav
from voicebridge.audio.playback import PlaybackSink, SoundDevicePlayer
from voicebridge.audio.transport import (
    AudioChunkTransport,
    Channel,
    NotificationKind,
    TransportNotification,
    WebSocketChannel,
)
from voicebridge.audio.vad import AmplitudeVAD, SpectrumAnalyser, VADConfig, VADEvent, VADState

__all__ = [
    "AmplitudeVAD",
    "AudioCaptureConfig",
    "AudioChunkTransport",
    "AudioFrame",
    "Channel",
    "FrameSource",
    "MicCapture",
    "NotificationKind",
    "PlaybackSink",
    "SoundDevicePlayer",
    "SpectrumAnalyser",
    "StreamedFrameSource",
    "TransportNotification",
    "Utterance",
    "VADConfig",
    "VADEvent",
    "VADState",
    "WebSocketChannel",
    "float_to_pcm16",
    "pcm16_to_float",
    "pcm16_to_wav",
]
