"""
Voice socket server.

Browsers (or ``voicebridge talk --server``) connect over a WebSocket, stream
PCM16 audio in and receive session notifications back. Every connection
gets its own continuous TurnSession fed by a StreamedFrameSource.

Client -> server (JSON text frames, ``{"event": ..., "data": {...}}``):
    start-voice-session  {sessionId?, conversationId?, scenario?}
    audio-chunk          {audio: <base64 PCM16>}   (or a raw binary frame)
    user-text            {text}
    end-voice-session    {}
    clear-session        {}

Server -> client: see NotificationKind.
"""

import asyncio
import base64
import binascii
import json
import logging
import uuid
from dataclasses import dataclass, replace

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from voicebridge.audio.capture import StreamedFrameSource
from voicebridge.audio.transport import NotificationKind, TransportNotification
from voicebridge.audio.vad import AmplitudeVAD, VADConfig
from voicebridge.contracts import (
    ModeChanged,
    ProcessingStarted,
    SessionError,
    SessionEvent,
    SpeechDetected,
    Transcript,
    TurnCompleted,
)
from voicebridge.core.continuity import ConversationStore
from voicebridge.core.events import EventChannel
from voicebridge.core.registry import SessionRegistry
from voicebridge.core.resolver import ResponseResolver
from voicebridge.core.turn_session import RetryPolicy, Transcriber, TurnSession
from voicebridge.errors import CaptureError

logger = logging.getLogger(__name__)


def to_notification(event: SessionEvent) -> TransportNotification | None:
    """Map a session event to the notification a client sees, if any."""
    if isinstance(event, SpeechDetected):
        return TransportNotification(NotificationKind.SPEECH_DETECTED)

    if isinstance(event, ProcessingStarted):
        return TransportNotification(NotificationKind.PROCESSING_AUDIO)

    if isinstance(event, Transcript):
        return TransportNotification(
            NotificationKind.TRANSCRIPT,
            {"text": event.text, "isFinal": event.is_final},
        )

    if isinstance(event, TurnCompleted):
        payload = {
            "transcription": event.user_text,
            "response": event.assistant_text,
            "conversationId": event.provider_conversation_id,
            "provider": event.provider,
            "audio": None,
            "audioFormat": None,
            "audioUrl": None,
        }
        audio = event.audio_ref
        if audio is not None:
            if audio.data:
                payload["audio"] = base64.b64encode(audio.data).decode("ascii")
            payload["audioFormat"] = audio.format
            payload["audioUrl"] = audio.url
        return TransportNotification(NotificationKind.AGENT_RESPONSE, payload)

    if isinstance(event, ModeChanged):
        return TransportNotification(NotificationKind.MODE_CHANGE, {"mode": event.mode})

    if isinstance(event, SessionError):
        return TransportNotification(
            NotificationKind.ERROR,
            {"message": event.reason, "type": event.error_type},
        )

    return None


@dataclass
class _Connection:
    websocket: ServerConnection
    source: StreamedFrameSource
    session: TurnSession


class VoiceServer:
    """WebSocket front end over a shared ConversationStore and resolver."""

    def __init__(
        self,
        store: ConversationStore,
        resolver: ResponseResolver,
        transcriber: Transcriber | None = None,
        host: str = "localhost",
        port: int = 5000,
        vad_config: VADConfig | None = None,
        sample_rate: int = 16000,
        retry_policy: RetryPolicy | None = None,
    ):
        self.store = store
        self.resolver = resolver
        self.transcriber = transcriber
        self.host = host
        self.port = port
        self.vad_config = vad_config or VADConfig.conversational()
        self.sample_rate = sample_rate
        self.retry_policy = retry_policy
        self.registry = SessionRegistry(self._create_session)
        self._connections: dict[str, _Connection] = {}

    def _create_session(
        self,
        connection_id: str,
        websocket: ServerConnection,
        session_id: str,
    ) -> TurnSession:
        source = StreamedFrameSource(sample_rate=self.sample_rate)
        events = EventChannel()
        session = TurnSession(
            session_id=session_id,
            source=source,
            vad=AmplitudeVAD(replace(self.vad_config)),
            resolver=self.resolver,
            transcriber=self.transcriber,
            events=events,
            continuous=True,
            retry_policy=self.retry_policy,
            sample_rate=self.sample_rate,
        )

        async def forward(event: SessionEvent) -> None:
            notification = to_notification(event)
            if notification is not None:
                await self._send(websocket, notification)

        events.subscribe(forward)
        self._connections[connection_id] = _Connection(websocket, source, session)
        return session

    async def _send(self, websocket: ServerConnection, notification: TransportNotification) -> None:
        try:
            await websocket.send(notification.to_message())
        except ConnectionClosed:
            logger.debug(f"Client gone, dropped {notification.kind.value}")

    async def _send_error(self, websocket: ServerConnection, message: str) -> None:
        await self._send(
            websocket,
            TransportNotification(NotificationKind.ERROR, {"message": message}),
        )

    async def handler(self, websocket: ServerConnection) -> None:
        """Serve one client connection until it disconnects."""
        connection_id = str(uuid.uuid4())
        logger.info(f"Client connected: {connection_id}")

        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    self._push_audio(connection_id, message)
                    continue

                try:
                    data = json.loads(message)
                    event = data["event"]
                    payload = data.get("data") or {}
                except (json.JSONDecodeError, KeyError, TypeError, AttributeError):
                    logger.warning(f"Malformed client message: {message[:100]}")
                    await self._send_error(websocket, "Malformed message")
                    continue

                await self._handle_event(connection_id, websocket, event, payload)
        except ConnectionClosed as e:
            logger.info(f"Client {connection_id} connection closed: {e}")
        finally:
            await self._teardown(connection_id)

    async def _handle_event(
        self,
        connection_id: str,
        websocket: ServerConnection,
        event: str,
        payload: dict,
    ) -> None:
        if event == "start-voice-session":
            await self._start_voice_session(connection_id, websocket, payload)

        elif event == "audio-chunk":
            try:
                chunk = base64.b64decode(payload.get("audio", ""), validate=True)
            except (binascii.Error, ValueError):
                await self._send_error(websocket, "Invalid audio chunk")
                return
            self._push_audio(connection_id, chunk)

        elif event == "user-text":
            text = str(payload.get("text", "")).strip()
            if not text:
                await self._send_error(websocket, "Message is required")
                return
            session = self._session_for(connection_id, websocket, payload)
            if not await session.submit_text(text):
                await self._send_error(websocket, "A turn is already in progress")

        elif event == "end-voice-session":
            await self.registry.stop_turn_session(connection_id)
            logger.info(f"Voice session ended for {connection_id}")

        elif event == "clear-session":
            connection = self._connections.get(connection_id)
            if connection is not None:
                self.store.clear(connection.session.session_id)

        else:
            await self._send_error(websocket, f"Unknown event: {event}")

    def _session_for(
        self,
        connection_id: str,
        websocket: ServerConnection,
        payload: dict,
    ) -> TurnSession:
        session = self.registry.get(connection_id)
        if session is not None:
            return session
        session_id = payload.get("sessionId") or str(uuid.uuid4())
        self.store.get_or_create(session_id, payload.get("scenario"))
        return self.registry.open(connection_id, websocket=websocket, session_id=session_id)

    async def _start_voice_session(
        self,
        connection_id: str,
        websocket: ServerConnection,
        payload: dict,
    ) -> None:
        session_id = payload.get("sessionId")
        existing = self.registry.get(connection_id)
        if existing is not None and session_id and existing.session_id != session_id:
            await self.registry.close(connection_id)
            self._connections.pop(connection_id, None)

        session = self._session_for(connection_id, websocket, payload)
        conversation = self.store.get_or_create(session.session_id, payload.get("scenario"))
        if payload.get("conversationId"):
            self.store.set_provider_conversation_id(session.session_id, payload["conversationId"])

        try:
            await self.registry.start_turn_session(connection_id)
        except CaptureError as e:
            await self._send_error(websocket, f"Could not start voice session: {e}")
            return

        await self._send(
            websocket,
            TransportNotification(
                NotificationKind.SESSION_STARTED,
                {
                    "sessionId": session.session_id,
                    "conversationId": conversation.provider_conversation_id,
                    "scenario": conversation.scenario,
                },
            ),
        )

    def _push_audio(self, connection_id: str, chunk: bytes) -> None:
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug(f"Audio from {connection_id} before session start, dropped")
            return
        connection.source.push_pcm(chunk)

    async def _teardown(self, connection_id: str) -> None:
        session = self.registry.get(connection_id)
        await self.registry.close(connection_id)
        if session is not None:
            self.store.clear(session.session_id)
        self._connections.pop(connection_id, None)
        logger.info(f"Client disconnected: {connection_id}")

    async def serve_forever(self) -> None:
        """Run the server until cancelled."""
        async with serve(self.handler, self.host, self.port, max_size=None):
            logger.info(f"Voice server listening on ws://{self.host}:{self.port}")
            try:
                await asyncio.Future()  # Run forever
            finally:
                await self.shutdown()

    async def shutdown(self) -> None:
        await self.registry.close_all()
        self._connections.clear()
        self.store.close()
