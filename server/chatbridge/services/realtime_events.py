"""Realtime protocol event model shared by the browser and upstream sockets."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union


class MalformedPayloadError(ValueError):
    """Raised when a socket frame cannot be decoded into a realtime event."""


class UpstreamProtocolError(RuntimeError):
    """An ``error`` event reported by the upstream speech model."""

    def __init__(self, message: str, *, code: Optional[str] = None, event_id: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.event_id = event_id

    @classmethod
    def from_event(cls, event: "RealtimeEvent") -> "UpstreamProtocolError":
        detail = event.get("error")
        if isinstance(detail, Mapping):
            message = str(detail.get("message") or "Unknown upstream error")
            code = detail.get("code")
        else:
            message = str(detail or "Unknown upstream error")
            code = None
        return cls(message, code=code if isinstance(code, str) else None, event_id=event.get("event_id"))


class EventKind(str, Enum):
    """Event types the relay knows by name.

    The protocol's type space is open; events whose type is not listed here are
    still parsed and forwarded, they just have no ``kind``.
    """

    # client -> server
    SESSION_UPDATE = "session.update"
    INPUT_AUDIO_BUFFER_APPEND = "input_audio_buffer.append"
    INPUT_AUDIO_BUFFER_COMMIT = "input_audio_buffer.commit"
    INPUT_AUDIO_BUFFER_CLEAR = "input_audio_buffer.clear"
    CONVERSATION_ITEM_CREATE = "conversation.item.create"
    CONVERSATION_ITEM_TRUNCATE = "conversation.item.truncate"
    CONVERSATION_ITEM_DELETE = "conversation.item.delete"
    RESPONSE_CREATE = "response.create"
    RESPONSE_CANCEL = "response.cancel"

    # server -> client
    ERROR = "error"
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    CONVERSATION_CREATED = "conversation.created"
    INPUT_AUDIO_BUFFER_COMMITTED = "input_audio_buffer.committed"
    INPUT_AUDIO_BUFFER_CLEARED = "input_audio_buffer.cleared"
    INPUT_AUDIO_BUFFER_SPEECH_STARTED = "input_audio_buffer.speech_started"
    INPUT_AUDIO_BUFFER_SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
    CONVERSATION_ITEM_CREATED = "conversation.item.created"
    CONVERSATION_ITEM_TRUNCATED = "conversation.item.truncated"
    CONVERSATION_ITEM_DELETED = "conversation.item.deleted"
    INPUT_AUDIO_TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
    INPUT_AUDIO_TRANSCRIPTION_FAILED = "conversation.item.input_audio_transcription.failed"
    RESPONSE_CREATED = "response.created"
    RESPONSE_DONE = "response.done"
    RESPONSE_OUTPUT_ITEM_ADDED = "response.output_item.added"
    RESPONSE_OUTPUT_ITEM_DONE = "response.output_item.done"
    RESPONSE_CONTENT_PART_ADDED = "response.content_part.added"
    RESPONSE_CONTENT_PART_DONE = "response.content_part.done"
    RESPONSE_TEXT_DELTA = "response.text.delta"
    RESPONSE_TEXT_DONE = "response.text.done"
    RESPONSE_AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
    RESPONSE_AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
    RESPONSE_AUDIO_DELTA = "response.audio.delta"
    RESPONSE_AUDIO_DONE = "response.audio.done"
    RESPONSE_FUNCTION_CALL_ARGUMENTS_DELTA = "response.function_call_arguments.delta"
    RESPONSE_FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"
    RATE_LIMITS_UPDATED = "rate_limits.updated"

    @classmethod
    def lookup(cls, value: str) -> Optional["EventKind"]:
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class RealtimeEvent:
    """One protocol event: a JSON object with a string ``type``.

    ``raw`` keeps the exact text received from a socket so that forwarding
    re-sends the original bytes instead of a re-serialization.
    """

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    raw: Optional[str] = field(default=None, compare=False, repr=False)

    @property
    def kind(self) -> Optional[EventKind]:
        return EventKind.lookup(self.type)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def to_json(self) -> str:
        if self.raw is not None:
            return self.raw
        return json.dumps(self.payload)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RealtimeEvent":
        event_type = data.get("type")
        if not isinstance(event_type, str) or not event_type:
            raise MalformedPayloadError("event is missing a string 'type' field")
        return cls(type=event_type, payload=dict(data))

    @classmethod
    def parse(cls, frame: Union[str, bytes]) -> "RealtimeEvent":
        """Decode one socket frame, raising ``MalformedPayloadError`` on bad input."""

        if isinstance(frame, (bytes, bytearray)):
            try:
                frame = bytes(frame).decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MalformedPayloadError(f"frame is not valid UTF-8: {exc}") from exc
        try:
            data = json.loads(frame)
        except ValueError as exc:
            raise MalformedPayloadError(f"frame is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedPayloadError(f"expected a JSON object, got {type(data).__name__}")
        event = cls.from_dict(data)
        return cls(type=event.type, payload=event.payload, raw=frame)


EventLike = Union[RealtimeEvent, Mapping[str, Any]]


def coerce_event(event: EventLike) -> RealtimeEvent:
    """Accept either a ``RealtimeEvent`` or a plain mapping with a ``type`` key."""

    if isinstance(event, RealtimeEvent):
        return event
    try:
        return RealtimeEvent.from_dict(event)
    except MalformedPayloadError as exc:
        raise ValueError(str(exc)) from exc


def connection_error_event(message: str) -> RealtimeEvent:
    """Synthetic browser-facing error used when the upstream socket cannot be opened."""

    return RealtimeEvent.from_dict({"type": EventKind.ERROR.value, "error": {"message": message}})


def function_output_event(call_id: Optional[str], output: str) -> RealtimeEvent:
    return RealtimeEvent.from_dict(
        {
            "type": EventKind.CONVERSATION_ITEM_CREATE.value,
            "item": {
                "type": "function_call_output",
                "call_id": call_id,
                "output": output,
            },
        }
    )
