"""Per-session event channel.

Each TurnSession owns one EventChannel. Subscribers (the CLI renderer, the
socket server, tests) register async handlers and receive every
SessionEvent in emission order.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine

from voicebridge.contracts import EventKind, SessionEvent

logger = logging.getLogger(__name__)

# Type alias for event handlers
EventHandler = Callable[[SessionEvent], Coroutine[Any, Any, None]]


class EventChannel:
    """Async observer channel for session events.

    Handler exceptions are logged and never interrupt dispatch to the
    remaining handlers or the emitting session.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[EventHandler]] = {}
        self._all_handlers: list[EventHandler] = []  # Handlers for all events

    def subscribe(self, handler: EventHandler, kind: EventKind | None = None) -> None:
        """Subscribe to one event kind, or to every event when kind is None."""
        if kind is None:
            self._all_handlers.append(handler)
        else:
            self._handlers.setdefault(kind, []).append(handler)

    def unsubscribe(self, handler: EventHandler, kind: EventKind | None = None) -> None:
        """Unsubscribe a handler."""
        if kind is None:
            if handler in self._all_handlers:
                self._all_handlers.remove(handler)
        elif kind in self._handlers and handler in self._handlers[kind]:
            self._handlers[kind].remove(handler)

    async def emit(self, event: SessionEvent) -> None:
        """Deliver an event to all matching handlers and wait for them."""
        handlers = list(self._all_handlers)
        handlers.extend(self._handlers.get(event.kind, []))

        if not handlers:
            return

        results = await asyncio.gather(
            *(handler(event) for handler in handlers),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Event handler failed for {event.kind.value}: {result}")

    def clear(self) -> None:
        """Clear all handlers."""
        self._handlers.clear()
        self._all_handlers.clear()
