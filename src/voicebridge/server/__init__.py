"""WebSocket server for streamed voice sessions."""

from voicebridge.server.voice_server import VoiceServer, to_notification

__all__ = ["VoiceServer", "to_notification"]
