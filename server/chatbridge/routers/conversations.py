"""Conversation endpoints bridging the chat UI to the Copilot Studio bot."""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from ..models import schemas
from ..services.direct_line import DirectLineClient, DirectLineError
from ..services.storage import ConversationStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_direct_line(request: Request) -> DirectLineClient:
    return request.app.state.direct_line


async def _require_conversation(store: ConversationStore, conversation_id: int) -> schemas.Conversation:
    conversation = await store.get_conversation(conversation_id)
    if conversation is None or not conversation.direct_line_conversation_id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.post("/start", response_model=schemas.ConversationStartResponse)
async def start_conversation(
    store: ConversationStore = Depends(get_store),
    direct_line: DirectLineClient = Depends(get_direct_line),
) -> schemas.ConversationStartResponse:
    """Open a bot conversation and record it locally."""

    try:
        started = await direct_line.start_conversation()
    except DirectLineError as exc:
        logger.error("Error starting conversation: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to start conversation") from exc

    stored = await store.create_conversation(
        schemas.ConversationCreate(direct_line_conversation_id=started.conversation_id)
    )
    return schemas.ConversationStartResponse(
        id=stored.id,
        direct_line_conversation_id=started.conversation_id,
        token=started.token,
        stream_url=started.stream_url,
    )


@router.post("/{conversation_id}/messages", response_model=schemas.SendMessageResponse)
async def send_message(
    conversation_id: int,
    payload: schemas.SendMessageRequest,
    store: ConversationStore = Depends(get_store),
    direct_line: DirectLineClient = Depends(get_direct_line),
) -> schemas.SendMessageResponse:
    """Forward a user message to the bot and keep a copy in the store."""

    if not payload.text:
        raise HTTPException(status_code=400, detail="Message text is required")

    conversation = await _require_conversation(store, conversation_id)
    try:
        activity_id = await direct_line.send_activity(conversation.direct_line_conversation_id, payload.text)
    except DirectLineError as exc:
        logger.error("Error sending message: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to send message") from exc

    await store.create_message(
        schemas.MessageCreate(conversation_id=conversation_id, text=payload.text, sender="user")
    )
    return schemas.SendMessageResponse(id=activity_id)


@router.get("/{conversation_id}/activities", response_model=schemas.DirectLineActivitySet)
async def get_activities(
    conversation_id: int,
    watermark: Optional[str] = None,
    store: ConversationStore = Depends(get_store),
    direct_line: DirectLineClient = Depends(get_direct_line),
) -> schemas.DirectLineActivitySet:
    """Poll the bot for activities after ``watermark`` and store new bot replies."""

    conversation = await _require_conversation(store, conversation_id)
    try:
        activity_set = await direct_line.get_activities(conversation.direct_line_conversation_id, watermark)
    except DirectLineError as exc:
        logger.error("Error getting activities: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to get activities") from exc

    for activity in activity_set.activities:
        sender_id = (activity.get("from") or {}).get("id")
        text = activity.get("text")
        if sender_id != "user" and activity.get("type") == "message" and text:
            await store.create_message(
                schemas.MessageCreate(conversation_id=conversation_id, text=text, sender="assistant")
            )
    return activity_set


@router.get("/{conversation_id}/messages", response_model=List[schemas.Message])
async def list_messages(
    conversation_id: int,
    store: ConversationStore = Depends(get_store),
) -> List[schemas.Message]:
    return await store.get_messages_by_conversation_id(conversation_id)


@router.delete("/{conversation_id}/messages", response_model=schemas.ClearMessagesResponse)
async def clear_messages(
    conversation_id: int,
    store: ConversationStore = Depends(get_store),
) -> schemas.ClearMessagesResponse:
    removed = await store.clear_conversation_messages(conversation_id)
    logger.info("Cleared %d message(s) from conversation %d", removed, conversation_id)
    return schemas.ClearMessagesResponse(success=True)
