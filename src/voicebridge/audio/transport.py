"""
Audio Chunk Transport

Streams captured audio to a remote processor as PCM16 chunks over a
persistent bidirectional channel, and decodes the processor's notifications.

Chunks are forwarded only while the transport is running and the channel is
connected. Anything else is dropped; there is no buffering and no replay.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Coroutine, Protocol

import numpy as np
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.protocol import State

from voicebridge.audio.capture import FrameSource, FrameSubscription
from voicebridge.audio.pcm import float_to_pcm16
from voicebridge.errors import ChannelUnavailable

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """A bidirectional message channel (binary audio out, JSON in)."""

    @property
    def connected(self) -> bool: ...

    async def send(self, data: bytes | str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[bytes | str]: ...


class NotificationKind(str, Enum):
    """Notifications a remote voice processor sends back."""

    SESSION_STARTED = "voice-session-started"
    SPEECH_DETECTED = "speech-detected"
    PROCESSING_AUDIO = "processing-audio"
    TRANSCRIPT = "transcript"
    AGENT_RESPONSE = "agent-response"
    MODE_CHANGE = "mode-change"
    ERROR = "error"


@dataclass
class TransportNotification:
    """One decoded notification from the remote processor."""

    kind: NotificationKind
    payload: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> str:
        return encode_message(self.kind.value, self.payload)


NotificationHandler = Callable[[TransportNotification], Coroutine[Any, Any, None]]


def encode_message(event: str, data: dict[str, Any] | None = None) -> str:
    """Encode an ``{"event": ..., "data": ...}`` text frame."""
    return json.dumps({"event": event, "data": data or {}})


def decode_notification(raw: bytes | str) -> TransportNotification | None:
    """Decode a text frame into a notification.

    Returns None for frames that are not valid notifications.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None

    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        return None

    if not isinstance(message, dict):
        return None

    try:
        kind = NotificationKind(message.get("event"))
    except ValueError:
        return None

    payload = message.get("data") or {}
    if not isinstance(payload, dict):
        return None

    return TransportNotification(kind=kind, payload=payload)


class WebSocketChannel:
    """Channel over a websockets client connection."""

    def __init__(self, url: str, headers: dict[str, str] | None = None):
        self.url = url
        self._headers = headers or {}
        self._ws = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def connect(self) -> None:
        if self.connected:
            return
        try:
            self._ws = await websockets.connect(
                self.url,
                additional_headers=self._headers,
                ping_interval=20,
                ping_timeout=20,
                max_size=None,
            )
        except (OSError, InvalidHandshake, InvalidURI) as e:
            raise ChannelUnavailable(f"Could not connect to {self.url}: {e}") from e
        logger.info(f"Connected to {self.url}")

    async def send(self, data: bytes | str) -> None:
        if self._ws is None:
            raise ChannelUnavailable("Channel is not connected")
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            raise ChannelUnavailable(f"Channel closed: {e}") from e

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def __aiter__(self) -> AsyncIterator[bytes | str]:
        if self._ws is None:
            return
        try:
            async for message in self._ws:
                yield message
        except ConnectionClosed as e:
            logger.warning(f"Channel closed: {e}")


class AudioChunkTransport:
    """Forwards PCM16 chunks to a channel and relays notifications upstream.

    Usage:
        transport = AudioChunkTransport(channel, on_notification=handler)
        await transport.start()
        transport.attach(mic)
        ...
        await transport.stop()
    """

    def __init__(
        self,
        channel: Channel,
        on_notification: NotificationHandler | None = None,
    ):
        self._channel = channel
        self._on_notification = on_notification
        self._stopped = False
        self._sent = 0
        self._dropped = 0
        self._pump_task: asyncio.Task | None = None
        self._receive_task: asyncio.Task | None = None
        self._subscription: FrameSubscription | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def sent_chunks(self) -> int:
        return self._sent

    @property
    def dropped_chunks(self) -> int:
        return self._dropped

    async def start(self) -> None:
        """Begin relaying inbound notifications."""
        self._stopped = False
        if self._receive_task is None:
            self._receive_task = asyncio.create_task(self._receive_loop())

    def attach(self, source: FrameSource) -> None:
        """Forward every frame published by ``source``."""
        if self._pump_task is not None:
            logger.warning("Transport already attached to a source")
            return
        self._subscription = source.subscribe()
        self._pump_task = asyncio.create_task(self._pump(self._subscription))

    async def _pump(self, subscription: FrameSubscription) -> None:
        async for frame in subscription:
            if self._stopped:
                break
            await self.send(float_to_pcm16(frame.samples))

    def on_frame(self, samples: np.ndarray) -> None:
        """Per-frame callback for callers that own the frame loop.

        The chunk is converted now and sent on the next loop iteration.
        """
        if self._stopped:
            self._drop("transport stopped")
            return
        task = asyncio.ensure_future(self.send(float_to_pcm16(samples)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send(self, chunk: bytes) -> bool:
        """Send one chunk. Returns False if it was dropped."""
        if self._stopped:
            self._drop("transport stopped")
            return False
        if not self._channel.connected:
            self._drop("channel not connected")
            return False
        try:
            await self._channel.send(chunk)
        except ChannelUnavailable as e:
            self._drop(str(e))
            return False
        self._sent += 1
        return True

    async def send_control(self, event: str, data: dict[str, Any] | None = None) -> None:
        """Send a JSON control message (session start/end)."""
        if not self._channel.connected:
            raise ChannelUnavailable(f"Cannot send {event}: channel not connected")
        await self._channel.send(encode_message(event, data))

    def _drop(self, reason: str) -> None:
        self._dropped += 1
        logger.debug(f"Dropped audio chunk ({reason})")

    async def _receive_loop(self) -> None:
        async for raw in self._channel:
            if self._stopped:
                break
            notification = decode_notification(raw)
            if notification is None:
                logger.warning(f"Ignoring malformed notification: {str(raw)[:100]}")
                continue
            if self._on_notification is None:
                continue
            try:
                await self._on_notification(notification)
            except Exception as e:
                logger.error(f"Notification handler failed for {notification.kind.value}: {e}")

    async def stop(self, close_channel: bool = False) -> None:
        """Stop forwarding. No chunk is delivered after this is called."""
        self._stopped = True

        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        tasks = [t for t in (self._pump_task, self._receive_task) if t is not None]
        tasks.extend(self._pending)
        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not current]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._pump_task = None
        self._receive_task = None
        self._pending.clear()

        if close_channel:
            await self._channel.close()

        logger.debug(f"Transport stopped (sent={self._sent}, dropped={self._dropped})")
