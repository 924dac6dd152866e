"""Error taxonomy for voicebridge.

Capture errors surface to whoever started the session. Provider errors are
recovered by the resolver's fallback chain and only become visible as the
apology reply when every provider has failed.
"""


class VoiceBridgeError(Exception):
    """Base class for all voicebridge errors."""


class CaptureError(VoiceBridgeError):
    """The audio input device could not be opened or stopped delivering frames."""


class PermissionDenied(CaptureError):
    """Microphone access was refused. Never retried automatically."""


class ChannelUnavailable(VoiceBridgeError):
    """The outbound audio channel is not connected."""


class ProviderError(VoiceBridgeError):
    """A response provider failed to produce a usable reply."""


class ProviderTimeout(ProviderError):
    """A response provider did not answer within its deadline."""


class MalformedProviderMessage(ProviderError):
    """An inbound provider message could not be parsed."""


class TranscriptionError(VoiceBridgeError):
    """Speech-to-text failed for an utterance."""


class PlaybackError(VoiceBridgeError):
    """Synthesized audio could not be played."""


class EvaluationError(VoiceBridgeError):
    """A session cannot be evaluated (unknown, or too short)."""
