"""ElevenLabs Conversational AI agent client.

Each ``converse`` call opens an agent WebSocket, sends one user message and
waits for the agent's text reply. Audio events that arrive before the reply
are collected and returned with it.
See: https://elevenlabs.io/docs/conversational-ai/api-reference/websocket
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Union
from urllib.parse import urlencode

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from voicebridge.config import get_config
from voicebridge.contracts import AudioRef
from voicebridge.core.resolver import PrimaryReply
from voicebridge.errors import ProviderError

logger = logging.getLogger(__name__)


class AgentMessageType(str, Enum):
    """Inbound message types we act on."""

    CONVERSATION_INITIATION = "conversation_initiation_metadata"
    AUDIO = "audio"
    AGENT_RESPONSE = "agent_response"
    PING = "ping"


@dataclass(frozen=True)
class ConversationInitiation:
    conversation_id: str | None
    audio_format: str | None = None


@dataclass(frozen=True)
class AgentAudio:
    audio_base64: str
    event_id: int | None = None


@dataclass(frozen=True)
class AgentResponse:
    text: str


@dataclass(frozen=True)
class Ping:
    event_id: int | None
    ping_ms: int | None = None


@dataclass(frozen=True)
class UnknownMessage:
    type: str


@dataclass(frozen=True)
class MalformedMessage:
    raw: str
    error: str


AgentMessage = Union[
    ConversationInitiation, AgentAudio, AgentResponse, Ping, UnknownMessage, MalformedMessage
]


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def decode_agent_message(raw: str | bytes) -> AgentMessage:
    """Decode one agent WebSocket frame. Never raises."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        return MalformedMessage(raw=raw[:200], error=str(e))

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        return MalformedMessage(raw=raw[:200], error="missing message type")

    msg_type = data["type"]

    if msg_type == AgentMessageType.CONVERSATION_INITIATION:
        event = data.get("conversation_initiation_metadata_event", {})
        if not isinstance(event, dict):
            return MalformedMessage(raw=raw[:200], error="initiation metadata is not an object")
        return ConversationInitiation(
            conversation_id=_optional_str(event.get("conversation_id")),
            audio_format=_optional_str(event.get("agent_output_audio_format")),
        )

    if msg_type == AgentMessageType.AUDIO:
        event = data.get("audio_event")
        payload = None
        if isinstance(event, dict):
            # The live API spells it audio_base_64
            payload = event.get("audio_base_64") or event.get("audio_base64")
        if not isinstance(payload, str) or not payload:
            return MalformedMessage(raw=raw[:200], error="audio event without payload")
        return AgentAudio(audio_base64=payload, event_id=event.get("event_id"))

    if msg_type == AgentMessageType.AGENT_RESPONSE:
        event = data.get("agent_response_event")
        if not isinstance(event, dict) or not isinstance(event.get("agent_response"), str):
            return MalformedMessage(raw=raw[:200], error="agent_response without text")
        return AgentResponse(text=event["agent_response"])

    if msg_type == AgentMessageType.PING:
        event = data.get("ping_event", {})
        if not isinstance(event, dict):
            return MalformedMessage(raw=raw[:200], error="ping event is not an object")
        return Ping(event_id=event.get("event_id"), ping_ms=event.get("ping_ms"))

    return UnknownMessage(type=msg_type)


class ElevenLabsAgentClient:
    """Primary provider backed by an ElevenLabs conversational agent."""

    WS_URL = "wss://api.elevenlabs.io/v1/convai/conversation"
    API_URL = "https://api.elevenlabs.io/v1"

    def __init__(
        self,
        api_key: str | None = None,
        agent_id: str | None = None,
    ):
        config = get_config()
        self._api_key = api_key or config.ELEVENLABS_API_KEY
        self._agent_id = agent_id or config.ELEVENLABS_AGENT_ID
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._agent_id)

    def _build_url(self, conversation_id: str | None = None) -> str:
        params = {"agent_id": self._agent_id}
        if conversation_id:
            params["conversation_id"] = conversation_id
        return f"{self.WS_URL}?{urlencode(params)}"

    async def converse(self, text: str, conversation_id: str | None = None) -> PrimaryReply:
        """Send one user message and wait for the agent's reply."""
        if not self.configured:
            raise ProviderError("ElevenLabs agent not configured")

        url = self._build_url(conversation_id)
        headers = {"xi-api-key": self._api_key}

        try:
            async with websockets.connect(url, additional_headers=headers, max_size=None) as ws:
                await ws.send(json.dumps({"type": "user_message", "text": text}))
                return await self._await_reply(ws, conversation_id)
        except ConnectionClosed as e:
            raise ProviderError(f"Agent connection closed: {e}") from e
        except (OSError, InvalidHandshake, InvalidURI) as e:
            raise ProviderError(f"Could not reach agent: {e}") from e

    async def _await_reply(self, ws, conversation_id: str | None) -> PrimaryReply:
        audio_chunks: list[bytes] = []
        audio_format = "pcm_16000"

        async for raw in ws:
            message = decode_agent_message(raw)

            if isinstance(message, MalformedMessage):
                logger.warning(f"Ignoring malformed agent message: {message.error}")

            elif isinstance(message, ConversationInitiation):
                if message.conversation_id:
                    conversation_id = message.conversation_id
                if message.audio_format:
                    audio_format = message.audio_format
                logger.debug(f"Agent conversation initialized: {conversation_id}")

            elif isinstance(message, AgentAudio):
                try:
                    audio_chunks.append(base64.b64decode(message.audio_base64))
                except (binascii.Error, ValueError) as e:
                    logger.warning(f"Ignoring undecodable agent audio: {e}")

            elif isinstance(message, Ping):
                await ws.send(json.dumps({"type": "pong", "event_id": message.event_id}))

            elif isinstance(message, AgentResponse):
                if not message.text.strip():
                    raise ProviderError("Agent returned an empty response")
                audio_ref = None
                if audio_chunks:
                    audio_ref = AudioRef(data=b"".join(audio_chunks), format=audio_format)
                return PrimaryReply(
                    text=message.text,
                    conversation_id=conversation_id,
                    audio_ref=audio_ref,
                )

            else:
                logger.debug(f"Ignoring agent message type: {message.type}")

        raise ProviderError("Agent closed the conversation before responding")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.API_URL,
                headers={"xi-api-key": self._api_key},
                timeout=15.0,
            )
        return self._client

    async def get_signed_url(self) -> str:
        """Fetch a signed URL a browser can use to talk to the agent directly."""
        if not self.configured:
            raise ProviderError("ElevenLabs agent not configured")

        client = await self._get_client()
        try:
            response = await client.get(
                "/convai/conversation/get_signed_url",
                params={"agent_id": self._agent_id},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(f"Could not get signed URL: {e}") from e

        signed_url = response.json().get("signed_url")
        if not signed_url:
            raise ProviderError("Signed URL missing from response")
        return signed_url

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
