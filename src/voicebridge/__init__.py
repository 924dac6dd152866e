"""voicebridge - microphone-to-agent voice conversation bridge."""

__version__ = "0.1.0"
