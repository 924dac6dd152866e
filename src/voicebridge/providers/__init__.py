"""Provider clients for voicebridge."""

from voicebridge.providers.chat import ChatCompletion, ChatCompletionsClient
from voicebridge.providers.elevenlabs_agent import (
    AgentAudio,
    AgentMessage,
    AgentResponse,
    ConversationInitiation,
    ElevenLabsAgentClient,
    MalformedMessage,
    Ping,
    UnknownMessage,
    decode_agent_message,
)
from voicebridge.providers.elevenlabs_stt import ElevenLabsTranscriber
from voicebridge.providers.elevenlabs_tts import ElevenLabsSpeechSynthesizer

__all__ = [
    "AgentAudio",
    "AgentMessage",
    "AgentResponse",
    "ChatCompletion",
    "ChatCompletionsClient",
    "ConversationInitiation",
    "ElevenLabsAgentClient",
    "ElevenLabsSpeechSynthesizer",
    "ElevenLabsTranscriber",
    "MalformedMessage",
    "Ping",
    "UnknownMessage",
    "decode_agent_message",
]
