"""Realtime voice relay between the browser and Azure OpenAI."""
from __future__ import annotations

import asyncio
import logging
import uuid
from enum import Enum
from typing import Callable, Optional

from fastapi import APIRouter, WebSocket

from ..services.event_channel import EventChannel, StarletteTransport
from ..services.realtime_events import (
    EventKind,
    RealtimeEvent,
    UpstreamProtocolError,
    connection_error_event,
)
from ..services.realtime_voice import RealtimeConnectionError, RealtimeVoiceSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["realtime"])

CONNECT_FAILURE_MESSAGE = "Failed to connect to Azure OpenAI Realtime API"

# Upstream events relayed to the browser. Everything else (notably tool-call
# events) stays server-side.
FORWARDED_EVENT_KINDS = (
    EventKind.SESSION_CREATED,
    EventKind.SESSION_UPDATED,
    EventKind.INPUT_AUDIO_BUFFER_COMMITTED,
    EventKind.INPUT_AUDIO_BUFFER_CLEARED,
    EventKind.INPUT_AUDIO_BUFFER_SPEECH_STARTED,
    EventKind.INPUT_AUDIO_BUFFER_SPEECH_STOPPED,
    EventKind.CONVERSATION_ITEM_CREATED,
    EventKind.INPUT_AUDIO_TRANSCRIPTION_COMPLETED,
    EventKind.RESPONSE_CREATED,
    EventKind.RESPONSE_OUTPUT_ITEM_ADDED,
    EventKind.RESPONSE_CONTENT_PART_ADDED,
    EventKind.RESPONSE_AUDIO_TRANSCRIPT_DELTA,
    EventKind.RESPONSE_AUDIO_DELTA,
    EventKind.RESPONSE_DONE,
    EventKind.ERROR,
)

SessionFactory = Callable[[str], RealtimeVoiceSession]


class RelayState(Enum):
    """Lifecycle of one browser/upstream relay pair."""

    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"


class RelaySession:
    """Ties one browser websocket to one upstream realtime session.

    Both sockets share a lifetime: when either side closes or fails, the other
    is closed too. ``CLOSING`` is terminal.
    """

    def __init__(self, websocket: WebSocket, upstream: RealtimeVoiceSession, relay_id: Optional[str] = None):
        self.relay_id = relay_id or upstream.session_id
        self.state = RelayState.CONNECTING
        self._browser = EventChannel(f"browser {self.relay_id}", StarletteTransport(websocket))
        self._upstream = upstream

    def _set_state(self, state: RelayState) -> None:
        old_state = self.state
        self.state = state
        logger.info(f"[Relay {self.relay_id}] State: {old_state.value} -> {state.value}")

    async def run(self) -> None:
        """Drive the pair from ``CONNECTING`` until both sockets are torn down."""

        try:
            await self._upstream.connect()
        except RealtimeConnectionError as exc:
            logger.error(f"[Relay {self.relay_id}] Upstream connect failed: {exc}")
            self._set_state(RelayState.CLOSING)
            await self._browser.send(connection_error_event(CONNECT_FAILURE_MESSAGE))
            # Leave the browser socket open until the client closes it.
            try:
                await self._browser.listen()
            finally:
                await self._teardown()
            return

        self._wire()
        self._set_state(RelayState.ACTIVE)

        browser_task = asyncio.create_task(self._browser.listen())
        upstream_task = asyncio.create_task(self._upstream.wait_closed())
        try:
            done, _ = await asyncio.wait({browser_task, upstream_task}, return_when=asyncio.FIRST_COMPLETED)
            side = "browser" if browser_task in done else "upstream"
            logger.info(f"[Relay {self.relay_id}] {side} side closed")
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error(f"[Relay {self.relay_id}] {side} loop failed: {task.exception()!r}")
        finally:
            try:
                await self.close()
            finally:
                for task in (browser_task, upstream_task):
                    if not task.done():
                        task.cancel()
                await asyncio.gather(browser_task, upstream_task, return_exceptions=True)

    def _wire(self) -> None:
        for kind in FORWARDED_EVENT_KINDS:
            self._upstream.on(kind, self._forward_to_browser)
        self._upstream.on(EventKind.ERROR, self._log_upstream_error)
        self._browser.on_any(self._forward_to_upstream)

    async def _forward_to_browser(self, event: RealtimeEvent) -> None:
        await self._browser.send(event)

    async def _forward_to_upstream(self, event: RealtimeEvent) -> None:
        await self._upstream.send_event(event)

    def _log_upstream_error(self, event: RealtimeEvent) -> None:
        error = UpstreamProtocolError.from_event(event)
        logger.warning(f"[Relay {self.relay_id}] Upstream reported error (code={error.code}): {error}")

    async def close(self) -> None:
        if self.state is RelayState.CLOSING:
            return
        self._set_state(RelayState.CLOSING)
        await self._teardown()

    async def _teardown(self) -> None:
        try:
            await self._upstream.disconnect()
        finally:
            await self._browser.close()


@router.websocket("/realtime")
async def realtime_voice_gateway(websocket: WebSocket) -> None:
    """Relay a browser voice session to the Azure OpenAI realtime API."""

    await websocket.accept()
    relay_id = uuid.uuid4().hex[:8]
    logger.info(f"[Relay {relay_id}] Browser connected")

    factory: SessionFactory = websocket.app.state.realtime_session_factory
    relay = RelaySession(websocket, factory(relay_id), relay_id=relay_id)
    await relay.run()
    logger.info(f"[Relay {relay_id}] Browser disconnected")
