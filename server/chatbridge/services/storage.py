"""Volatile conversation and message storage for the chat UI."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..models.schemas import Conversation, ConversationCreate, Message, MessageCreate


class ConversationStore:
    """In-memory store keyed by integer conversation id.

    Contents live for the lifetime of the instance; the application creates one
    per process and hands it to request handlers.
    """

    def __init__(self) -> None:
        self._conversations: Dict[int, Conversation] = {}
        self._messages: Dict[int, Message] = {}
        self._next_conversation_id = 1
        self._next_message_id = 1

    async def create_conversation(self, conversation: ConversationCreate) -> Conversation:
        now = datetime.now(timezone.utc)
        record = Conversation(
            id=self._next_conversation_id,
            direct_line_conversation_id=conversation.direct_line_conversation_id,
            created_at=now,
            updated_at=now,
        )
        self._conversations[record.id] = record
        self._next_conversation_id += 1
        return record

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    async def get_conversation_by_direct_line_id(self, direct_line_id: str) -> Optional[Conversation]:
        return next(
            (c for c in self._conversations.values() if c.direct_line_conversation_id == direct_line_id),
            None,
        )

    async def create_message(self, message: MessageCreate) -> Message:
        record = Message(
            id=self._next_message_id,
            timestamp=datetime.now(timezone.utc),
            **message.model_dump(),
        )
        self._messages[record.id] = record
        self._next_message_id += 1
        return record

    async def get_messages_by_conversation_id(self, conversation_id: int) -> List[Message]:
        """Messages for one conversation, oldest first (ties keep insertion order)."""

        matching = [m for m in self._messages.values() if m.conversation_id == conversation_id]
        return sorted(matching, key=lambda m: (m.timestamp, m.id))

    async def clear_conversation_messages(self, conversation_id: int) -> int:
        doomed = [mid for mid, m in self._messages.items() if m.conversation_id == conversation_id]
        for mid in doomed:
            del self._messages[mid]
        return len(doomed)
