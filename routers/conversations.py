from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException

from errors import NotFoundError, PersistenceError, ValidationError
from identity import require_user_id
from logging_config import get_logger
from relay import relay
from schemas.conversations import (
    Conversation,
    ConversationListResponse,
    CreateConversationRequest,
    GroupedMessagesResponse,
    Message,
    NewMessage,
    SendMessageRequest,
    message_date,
)

logger = get_logger(__name__)

conversations_router = APIRouter(tags=["conversations"])


@conversations_router.get("/conversations", response_model=ConversationListResponse, response_model_by_alias=True)
async def list_conversations(user_id: str = Depends(require_user_id)):
    logger.info(f"Conversation list request for user {user_id}")
    try:
        conversations = await relay.store.list_conversations(user_id)
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Internal error")
    return ConversationListResponse(data=conversations)


@conversations_router.post("/conversations", response_model=Conversation, response_model_by_alias=True)
async def get_or_create_conversation(body: CreateConversationRequest, user_id: str = Depends(require_user_id)):
    """Return the conversation with receiver_id, creating an empty one if there is none yet."""
    logger.info(f"Conversation request from {user_id} with {body.receiver_id}")
    try:
        conversation = await relay.store.find_conversation(user_id, body.receiver_id)
        if conversation is None:
            conversation = await relay.store.create_conversation(user_id, body.receiver_id)
        if conversation is None:
            conversation = await relay.store.find_conversation(user_id, body.receiver_id)
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Internal error")
    if conversation is None:
        raise HTTPException(status_code=500, detail="Internal error")
    return conversation


@conversations_router.get(
    "/conversations/{conversation_id}/messages",
    response_model=GroupedMessagesResponse,
    response_model_by_alias=True,
)
async def get_messages(conversation_id: str, user_id: str = Depends(require_user_id)):
    """Messages grouped by UTC day. Reading them clears the caller's unread counter."""
    logger.info(f"Message history request for conversation {conversation_id} by {user_id}")
    try:
        messages = await relay.store.list_messages(conversation_id)
        await relay.store.mark_read(conversation_id, user_id)
    except NotFoundError:
        logger.warning(f"Message history failed: Conversation {conversation_id} not found")
        raise HTTPException(status_code=404, detail="Conversation not found")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Internal error")

    grouped: Dict[str, List[Message]] = {}
    for message in messages:
        grouped.setdefault(message_date(message.created_at), []).append(message)
    return GroupedMessagesResponse(conversation_id=conversation_id, grouped_messages=grouped)


@conversations_router.post("/messages", response_model=NewMessage, response_model_by_alias=True, status_code=201)
async def send_message(body: SendMessageRequest, user_id: str = Depends(require_user_id)):
    """Send a chat message over HTTP. The receiver is notified like for a socket chatSend."""
    try:
        message, _ = await relay.send_message(user_id, body.receiver_id, body.content)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Internal error")
    return NewMessage.from_message(message)
