"""Pytest configuration and fixtures for the signaling and chat relay tests."""

import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from connections import ConnectionManager
from errors import NotFoundError, PersistenceError
from reconciler import PresenceReconciler
from redis_keys import conversation_pair_key
from registry import RoomRegistry
from relay import MessageRelay
from schemas.conversations import Conversation, Message
from signaling import SignalingRouter


# ============================================================================
# Test Doubles
# ============================================================================


class FakeWebSocket:
    """Records every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.sent: List[str] = []
        self.fail = fail

    async def send_text(self, text: str):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(text)

    @property
    def events(self) -> List[Dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    def of_type(self, event: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event"] == event]

    def clear(self):
        self.sent.clear()


class InMemoryStore:
    """Conversation store with the same interface as RedisBackend."""

    def __init__(self):
        self.conversations: Dict[str, Conversation] = {}
        self.pairs: Dict[str, str] = {}
        self.messages: List[Message] = []
        self.fail_on: set = set()
        self.delay: float = 0
        self.calls: List[str] = []

    async def _enter(self, operation: str):
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            # Suspend like a real round-trip would
            await asyncio.sleep(0)
        if operation in self.fail_on:
            raise PersistenceError(f"Failed to {operation}")

    async def ping(self) -> bool:
        return True

    async def close(self):
        pass

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        await self._enter("get_conversation")
        return self.conversations.get(conversation_id)

    async def find_conversation(self, user_a: str, user_b: str) -> Optional[Conversation]:
        await self._enter("find_conversation")
        conversation_id = self.pairs.get(conversation_pair_key(user_a, user_b))
        return self.conversations.get(conversation_id) if conversation_id else None

    async def create_conversation(self, user_one_id: str, user_two_id: str, fields: Optional[dict] = None) -> Optional[Conversation]:
        await self._enter("create_conversation")
        pair_key = conversation_pair_key(user_one_id, user_two_id)
        if pair_key in self.pairs:
            return None
        conversation = Conversation(
            id=uuid.uuid4().hex,
            user_one_id=user_one_id,
            user_two_id=user_two_id,
            created_at=datetime.now(timezone.utc),
            **(fields or {}),
        )
        self.pairs[pair_key] = conversation.id
        self.conversations[conversation.id] = conversation
        return conversation

    async def record_message(self, sender_id: str, receiver_id: str, content: str) -> Tuple[Message, Conversation]:
        await self._enter("record_message")
        now = datetime.now(timezone.utc)
        pair_key = conversation_pair_key(sender_id, receiver_id)
        current = self.conversations.get(self.pairs.get(pair_key, ""))
        if current is None:
            conversation = Conversation(
                id=uuid.uuid4().hex,
                user_one_id=sender_id,
                user_two_id=receiver_id,
                last_message=content,
                last_message_at=now,
                unread_count_for_user_one=0,
                unread_count_for_user_two=1,
                created_at=now,
            )
        else:
            update = {"last_message": content, "last_message_at": now}
            field = current.unread_field_for(receiver_id)
            if field:
                update[field] = getattr(current, field) + 1
            conversation = current.model_copy(update=update)
        message = Message(
            id=uuid.uuid4().hex,
            content=content,
            sender_id=sender_id,
            receiver_id=receiver_id,
            conversation_id=conversation.id,
            created_at=now,
        )
        # Nothing above is visible until here
        self.pairs[pair_key] = conversation.id
        self.conversations[conversation.id] = conversation
        self.messages.append(message)
        return message, conversation

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        await self._enter("list_conversations")
        return [c for c in self.conversations.values() if user_id in (c.user_one_id, c.user_two_id)]

    async def list_messages(self, conversation_id: str) -> List[Message]:
        await self._enter("list_messages")
        return [m for m in self.messages if m.conversation_id == conversation_id]

    async def mark_read(self, conversation_id: str, user_id: str) -> Conversation:
        await self._enter("mark_read")
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        field = conversation.unread_field_for(user_id)
        if field:
            conversation = conversation.model_copy(update={field: 0})
            self.conversations[conversation_id] = conversation
        return conversation


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def connections():
    return ConnectionManager()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def signaling(registry, connections):
    return SignalingRouter(registry, connections)


@pytest.fixture
def reconciler(registry, connections):
    return PresenceReconciler(registry, connections)


@pytest.fixture
def relay(store, connections):
    return MessageRelay(store, connections, timeout=0.5)


@pytest.fixture
def connect(connections):
    """Register a fake socket, optionally bound to a user. Returns (connection_id, socket)."""

    def _connect(user_id: Optional[str] = None, fail: bool = False):
        websocket = FakeWebSocket(fail=fail)
        connection = connections.register(websocket, user_id)
        return connection.connection_id, websocket

    return _connect
