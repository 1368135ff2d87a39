from __future__ import annotations

import asyncio

from chatbridge.models.schemas import ConversationCreate, MessageCreate
from chatbridge.services.storage import ConversationStore


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def test_conversations_get_sequential_integer_ids() -> None:
    async def scenario():
        store = ConversationStore()
        first = await store.create_conversation(ConversationCreate(direct_line_conversation_id="a"))
        second = await store.create_conversation(ConversationCreate(direct_line_conversation_id="b"))
        return store, first, second

    store, first, second = _run(scenario())
    assert (first.id, second.id) == (1, 2)
    assert _run(store.get_conversation(2)) == second
    assert _run(store.get_conversation(3)) is None
    assert _run(store.get_conversation_by_direct_line_id("a")) == first
    assert _run(store.get_conversation_by_direct_line_id("zzz")) is None


def test_messages_are_scoped_and_ordered() -> None:
    async def scenario():
        store = ConversationStore()
        for text in ("one", "two", "three"):
            await store.create_message(MessageCreate(conversation_id=1, text=text, sender="user"))
        await store.create_message(MessageCreate(conversation_id=2, text="elsewhere", sender="assistant"))
        return store

    store = _run(scenario())
    messages = _run(store.get_messages_by_conversation_id(1))
    assert [m.text for m in messages] == ["one", "two", "three"]
    assert [m.id for m in messages] == [1, 2, 3]
    assert messages[0].message_type == "text"


def test_clear_only_touches_one_conversation() -> None:
    async def scenario():
        store = ConversationStore()
        await store.create_message(MessageCreate(conversation_id=1, text="a", sender="user"))
        await store.create_message(MessageCreate(conversation_id=1, text="b", sender="assistant"))
        await store.create_message(MessageCreate(conversation_id=2, text="c", sender="user"))
        removed = await store.clear_conversation_messages(1)
        return store, removed

    store, removed = _run(scenario())
    assert removed == 2
    assert _run(store.get_messages_by_conversation_id(1)) == []
    assert [m.text for m in _run(store.get_messages_by_conversation_id(2))] == ["c"]


def test_separate_stores_do_not_share_state() -> None:
    a, b = ConversationStore(), ConversationStore()
    _run(a.create_message(MessageCreate(conversation_id=1, text="only in a", sender="user")))
    assert _run(b.get_messages_by_conversation_id(1)) == []
