"""Upstream Azure OpenAI realtime session management."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode, urlparse

import websockets

from ..config import Settings
from .event_channel import EventChannel, EventHandler, WebSocketsTransport
from .knowledge_search import KNOWLEDGE_TOOL, KnowledgeLookupInvoker, KnowledgeSearchService
from .realtime_events import EventKind, EventLike, RealtimeEvent, coerce_event

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]

# Audio deltas are large base64 frames.
MAX_FRAME_BYTES = 10 * 1024 * 1024


class RealtimeConnectionError(ConnectionError):
    """The upstream realtime socket could not be opened."""


@dataclass(frozen=True)
class TurnDetection:
    type: str = "server_vad"
    threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 200

    def as_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "threshold": self.threshold,
            "prefix_padding_ms": self.prefix_padding_ms,
            "silence_duration_ms": self.silence_duration_ms,
        }


@dataclass(frozen=True)
class SessionConfiguration:
    """The ``session.update`` payload sent once per upstream connection."""

    instructions: str
    voice: str
    modalities: Tuple[str, ...] = ("text", "audio")
    input_audio_format: str = "pcm16"
    output_audio_format: str = "pcm16"
    transcription_model: str = "whisper-1"
    turn_detection: TurnDetection = field(default_factory=TurnDetection)
    tools: Tuple[Dict[str, Any], ...] = (KNOWLEDGE_TOOL,)
    tool_choice: str = "auto"

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionConfiguration":
        return cls(instructions=settings.realtime_instructions, voice=settings.realtime_voice)

    def to_event(self) -> Dict[str, Any]:
        return {
            "type": EventKind.SESSION_UPDATE.value,
            "session": {
                "modalities": list(self.modalities),
                "instructions": self.instructions,
                "voice": self.voice,
                "input_audio_format": self.input_audio_format,
                "output_audio_format": self.output_audio_format,
                "input_audio_transcription": {"model": self.transcription_model},
                "turn_detection": self.turn_detection.as_dict(),
                "tools": [dict(tool) for tool in self.tools],
                "tool_choice": self.tool_choice,
            },
        }


class RealtimeVoiceSession:
    """Owns one upstream realtime socket for a single relay pair."""

    def __init__(
        self,
        settings: Settings,
        *,
        knowledge: Optional[KnowledgeSearchService] = None,
        connector: Optional[Connector] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self._settings = settings
        self._configuration = SessionConfiguration.from_settings(settings)
        self._connector = connector or websockets.connect
        self._channel = EventChannel(f"upstream {self.session_id}")
        self._listener: Optional[asyncio.Task] = None
        self._tool_tasks: set[asyncio.Task] = set()
        self._closed = False

        self._invoker = KnowledgeLookupInvoker(knowledge, self.send_event) if knowledge else None
        self._channel.on(EventKind.RESPONSE_FUNCTION_CALL_ARGUMENTS_DONE, self._on_function_call)

    @property
    def configuration(self) -> SessionConfiguration:
        return self._configuration

    @property
    def url(self) -> str:
        endpoint = self._settings.azure_openai_endpoint or ""
        host = urlparse(endpoint).netloc or endpoint.replace("https://", "").replace("wss://", "")
        query = urlencode(
            {
                "api-version": self._settings.realtime_api_version,
                "deployment": self._settings.realtime_deployment,
            }
        )
        return f"wss://{host.rstrip('/')}/openai/realtime?{query}"

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "api-key": self._settings.azure_openai_api_key or "",
            "OpenAI-Beta": "realtime=v1",
        }

    @property
    def is_open(self) -> bool:
        return self._channel.is_open

    async def connect(self) -> None:
        """Open the upstream socket, send the session configuration and start reading."""

        if not self._settings.azure_openai_endpoint:
            raise RealtimeConnectionError("AZURE_OPENAI_ENDPOINT is not configured")
        try:
            connection = await self._connector(
                self.url,
                additional_headers=self.headers,
                max_size=MAX_FRAME_BYTES,
            )
        except Exception as exc:
            raise RealtimeConnectionError(f"Failed to open realtime socket: {exc}") from exc

        self._channel.attach(WebSocketsTransport(connection))
        logger.info(f"[Session {self.session_id}] Azure OpenAI realtime socket connected")
        await self._channel.send(self._configuration.to_event())
        self._listener = asyncio.create_task(self._channel.listen())

    async def send_event(self, event: EventLike) -> bool:
        """Forward one event upstream; requires only a ``type`` field."""

        return await self._channel.send(coerce_event(event))

    def on(self, kind: EventKind, handler: EventHandler) -> None:
        self._channel.on(kind, handler)

    def on_any(self, handler: EventHandler) -> None:
        self._channel.on_any(handler)

    async def wait_closed(self) -> None:
        """Resolve once the upstream receive loop has ended."""

        if self._listener is None:
            return
        try:
            await asyncio.shield(self._listener)
        except asyncio.CancelledError:
            if not self._listener.cancelled():
                raise

    async def wait_for_tool_calls(self) -> None:
        if self._tool_tasks:
            await asyncio.gather(*list(self._tool_tasks), return_exceptions=True)

    async def disconnect(self) -> None:
        """Close the upstream socket. Safe to call more than once."""

        if self._closed:
            return
        self._closed = True

        for task in list(self._tool_tasks):
            task.cancel()
        await self._channel.close()

        current = asyncio.current_task()
        if self._listener is not None and self._listener is not current and not self._listener.done():
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
        logger.info(f"[Session {self.session_id}] Azure OpenAI realtime socket closed")

    def _on_function_call(self, event: RealtimeEvent) -> None:
        if self._invoker is None or not self._invoker.handles(event):
            logger.info(
                f"[Session {self.session_id}] Ignoring call to unregistered tool {event.get('name')!r}"
            )
            return
        logger.info(f"[Session {self.session_id}] Tool call {event.get('call_id')} -> {event.get('name')}")
        # Run off the receive loop so upstream events keep flowing during the lookup.
        task = asyncio.create_task(self._invoker.invoke(event))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)
