"""Pydantic models describing stored records and REST payloads."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes with the camelCase keys the chat UI expects."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


Sender = Literal["user", "assistant"]
MessageType = Literal["text", "voice"]


class ConversationCreate(CamelModel):
    direct_line_conversation_id: Optional[str] = None


class Conversation(ConversationCreate):
    id: int
    created_at: datetime
    updated_at: datetime


class MessageCreate(CamelModel):
    conversation_id: int
    text: str
    sender: Sender
    message_type: MessageType = "text"


class Message(MessageCreate):
    id: int
    timestamp: datetime


class DirectLineConversation(CamelModel):
    """Conversation handle returned by Direct Line when a conversation starts."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    conversation_id: str
    token: Optional[str] = None
    stream_url: Optional[str] = None
    expires_in: Optional[int] = None


class DirectLineActivitySet(BaseModel):
    """A page of bot activities plus the watermark to resume from."""

    activities: List[Dict[str, Any]] = Field(default_factory=list)
    watermark: Optional[str] = None


class ConversationStartResponse(CamelModel):
    id: int
    direct_line_conversation_id: str
    token: Optional[str] = None
    stream_url: Optional[str] = None


class SendMessageRequest(BaseModel):
    text: Optional[str] = Field(default=None, description="User message text forwarded to the bot")


class SendMessageResponse(BaseModel):
    id: str


class ClearMessagesResponse(BaseModel):
    success: bool = True
