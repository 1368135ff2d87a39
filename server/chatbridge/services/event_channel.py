"""Duplex named-event channel over a single websocket.

The same ``EventChannel`` wraps both sides of a relay pair: the browser's
Starlette websocket and the upstream ``websockets`` client connection. Each side
is adapted to the small ``EventTransport`` protocol below.
"""
from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from .realtime_events import EventKind, EventLike, MalformedPayloadError, RealtimeEvent, coerce_event

logger = logging.getLogger(__name__)

EventHandler = Callable[[RealtimeEvent], Union[Awaitable[Any], Any]]


class EventTransport(Protocol):
    """Minimal surface the channel needs from a websocket."""

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, text: str) -> None: ...

    async def receive_text(self) -> Optional[Union[str, bytes]]: ...

    async def close(self) -> None: ...


class WebSocketsTransport:
    """Adapter for a ``websockets`` asyncio client connection."""

    def __init__(self, connection: Any) -> None:
        self._connection = connection

    @property
    def is_open(self) -> bool:
        return self._connection.state is State.OPEN

    async def send_text(self, text: str) -> None:
        await self._connection.send(text)

    async def receive_text(self) -> Optional[Union[str, bytes]]:
        try:
            return await self._connection.recv()
        except ConnectionClosed as exc:
            logger.info("Upstream connection closed (code=%s)", getattr(exc.rcvd, "code", None))
            return None

    async def close(self) -> None:
        await self._connection.close()


class StarletteTransport:
    """Adapter for the browser-facing FastAPI/Starlette websocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self._websocket.client_state is WebSocketState.CONNECTED
            and self._websocket.application_state is WebSocketState.CONNECTED
        )

    async def send_text(self, text: str) -> None:
        try:
            await self._websocket.send_text(text)
        except WebSocketDisconnect as exc:
            raise ConnectionError(f"browser disconnected (code={exc.code})") from exc

    async def receive_text(self) -> Optional[Union[str, bytes]]:
        if self._websocket.client_state is not WebSocketState.CONNECTED:
            return None
        message = await self._websocket.receive()
        if message["type"] == "websocket.disconnect":
            return None
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes")

    async def close(self) -> None:
        if not self.is_open:
            return
        try:
            await self._websocket.close()
        except WebSocketDisconnect as exc:
            raise ConnectionError(f"browser disconnected (code={exc.code})") from exc


class EventChannel:
    """Named-event pub/sub wrapper around one ``EventTransport``."""

    def __init__(self, name: str, transport: Optional[EventTransport] = None) -> None:
        self.name = name
        self._transport = transport
        # (kind, handler) in registration order; a ``None`` kind matches every event.
        self._subscriptions: list[tuple[Optional[EventKind], EventHandler]] = []

    def attach(self, transport: EventTransport) -> None:
        self._transport = transport

    @property
    def is_open(self) -> bool:
        return self._transport is not None and self._transport.is_open

    def on(self, kind: Union[EventKind, str], handler: EventHandler) -> None:
        """Subscribe ``handler`` to one known event kind."""

        self._subscriptions.append((EventKind(kind), handler))

    def on_any(self, handler: EventHandler) -> None:
        """Subscribe ``handler`` to every event, including unrecognized types."""

        self._subscriptions.append((None, handler))

    async def send(self, event: EventLike) -> bool:
        """Transmit one event; returns ``False`` instead of raising when undeliverable."""

        realtime_event = coerce_event(event)
        if not self.is_open:
            logger.error("[%s] Cannot send %s: connection is not open", self.name, realtime_event.type)
            return False
        try:
            await self._transport.send_text(realtime_event.to_json())
        except (ConnectionClosed, RuntimeError, OSError) as exc:
            logger.error("[%s] Failed sending %s: %s", self.name, realtime_event.type, exc)
            return False
        return True

    async def dispatch(self, event: RealtimeEvent) -> None:
        kind = event.kind
        handlers = [handler for wanted, handler in self._subscriptions if wanted is None or wanted is kind]
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("[%s] Handler for %s failed", self.name, event.type)

    async def feed(self, frame: Union[str, bytes]) -> Optional[RealtimeEvent]:
        """Parse and dispatch one raw frame; malformed frames are logged and dropped."""

        try:
            event = RealtimeEvent.parse(frame)
        except MalformedPayloadError as exc:
            logger.warning("[%s] Dropping malformed payload: %s", self.name, exc)
            return None
        await self.dispatch(event)
        return event

    async def listen(self) -> None:
        """Receive and dispatch until the underlying connection closes."""

        if self._transport is None:
            raise RuntimeError(f"channel {self.name} has no transport attached")
        while True:
            frame = await self._transport.receive_text()
            if frame is None:
                logger.info("[%s] Connection closed", self.name)
                return
            await self.feed(frame)

    async def close(self) -> None:
        if self._transport is None:
            return
        try:
            await self._transport.close()
        except (ConnectionClosed, RuntimeError, OSError) as exc:
            logger.debug("[%s] Close raised: %s", self.name, exc)
