import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import redis.asyncio as redis
from redis.asyncio.client import Pipeline
from redis.exceptions import RedisError, WatchError

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, PERSISTENCE_TIMEOUT_SECONDS
from errors import NotFoundError, PersistenceError
from logging_config import get_logger
from redis_keys import (
    REDIS_CONVERSATION_KEY,
    REDIS_CONVERSATION_MESSAGES_KEY,
    REDIS_MESSAGE_KEY,
    REDIS_USER_CONVERSATIONS_KEY,
    conversation_pair_key,
)
from schemas.conversations import Conversation, Message

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_redis_mapping(fields: dict) -> dict:
    """Convert values to strings for a Redis hash, skipping None values."""
    mapping = {}
    for k, v in fields.items():
        if v is None:
            continue
        if isinstance(v, datetime):
            mapping[k] = v.isoformat()
        else:
            mapping[k] = str(v)
    return mapping


class RedisBackend:
    """Conversation and message store.

    Conversations are hashes keyed by id. A string key per unordered user pair
    points at the conversation id. Every write that touches a pair runs in one
    MULTI/EXEC guarded by WATCH on the pair key, so at most one conversation
    exists per pair and a failed write leaves nothing behind. Unread counters
    are only changed with HINCRBY.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        if redis_client is None:
            logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
            redis_client = redis.Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                password=REDIS_PASSWORD,
                db=REDIS_DB,
                decode_responses=True,
                socket_connect_timeout=PERSISTENCE_TIMEOUT_SECONDS,
            )
        self.redis_client = redis_client

    @contextmanager
    def _translate_errors(self, operation: str):
        try:
            yield
        except RedisError as e:
            logger.error(f"Redis error during {operation}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to {operation}") from e

    async def ping(self) -> bool:
        with self._translate_errors("ping"):
            return await self.redis_client.ping()

    async def close(self):
        await self.redis_client.aclose()

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._translate_errors("get conversation"):
            data = await self.redis_client.hgetall(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id))
        if not data:
            logger.debug(f"Conversation {conversation_id} not found in Redis")
            return None
        return Conversation.model_validate(data)

    async def _load_pair(self, client, user_a: str, user_b: str) -> Optional[Conversation]:
        # client is the Redis client or a pipeline in watch (immediate) mode
        conversation_id = await client.get(conversation_pair_key(user_a, user_b))
        if not conversation_id:
            return None
        data = await client.hgetall(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id))
        if not data:
            logger.warning(f"Pair key for {user_a} and {user_b} points at missing conversation {conversation_id}")
            return None
        conversation = Conversation.model_validate(data)
        if not conversation.is_between(user_a, user_b):
            logger.warning(f"Conversation {conversation_id} does not belong to {user_a} and {user_b}")
            return None
        return conversation

    async def _pair_transaction(self, user_a: str, user_b: str, queue: Callable):
        """Run queue(pipe, current) inside MULTI/EXEC with WATCH on the pair key.

        queue gets the pair's current conversation (or None), queues its
        writes and returns a value; returning None aborts without writing.
        The whole attempt is retried when another writer changes the pair key
        before EXEC. Returns (value, EXEC results).
        """
        pair_key = conversation_pair_key(user_a, user_b)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(pair_key)
                    current = await self._load_pair(pipe, user_a, user_b)
                    pipe.multi()
                    value = queue(pipe, current)
                    if value is None:
                        return None, []
                    return value, await pipe.execute()
                except WatchError:
                    logger.debug(f"Pair {user_a}/{user_b} changed during a transaction, retrying")

    async def find_conversation(self, user_a: str, user_b: str) -> Optional[Conversation]:
        """Find the conversation between two users regardless of argument order."""
        with self._translate_errors("find conversation"):
            return await self._load_pair(self.redis_client, user_a, user_b)

    @staticmethod
    def _new_conversation(user_one_id: str, user_two_id: str, fields: Optional[dict], now: datetime) -> Conversation:
        record = {
            "id": uuid.uuid4().hex,
            "user_one_id": user_one_id,
            "user_two_id": user_two_id,
            "last_message": "",
            "unread_count_for_user_one": 0,
            "unread_count_for_user_two": 0,
            "created_at": now,
        }
        record.update(fields or {})
        return Conversation.model_validate(record)

    @staticmethod
    def _queue_conversation(pipe: Pipeline, conversation: Conversation):
        pipe.set(conversation_pair_key(conversation.user_one_id, conversation.user_two_id), conversation.id)
        pipe.hset(REDIS_CONVERSATION_KEY.format(conversation_id=conversation.id), mapping=to_redis_mapping(conversation.model_dump()))
        score = (conversation.last_message_at or conversation.created_at).timestamp()
        for user_id in {conversation.user_one_id, conversation.user_two_id}:
            pipe.zadd(REDIS_USER_CONVERSATIONS_KEY.format(user_id=user_id), {conversation.id: score})

    @staticmethod
    def _queue_update(pipe: Pipeline, conversation: Conversation, fields: dict, increment: Optional[str]):
        key = REDIS_CONVERSATION_KEY.format(conversation_id=conversation.id)
        mapping = to_redis_mapping(fields)
        if mapping:
            pipe.hset(key, mapping=mapping)
        if increment:
            pipe.hincrby(key, increment, 1)
        last_message_at = fields.get("last_message_at")
        if last_message_at is not None:
            for user_id in {conversation.user_one_id, conversation.user_two_id}:
                pipe.zadd(REDIS_USER_CONVERSATIONS_KEY.format(user_id=user_id), {conversation.id: last_message_at.timestamp()})

    @staticmethod
    def _queue_message(pipe: Pipeline, message: Message):
        pipe.hset(REDIS_MESSAGE_KEY.format(message_id=message.id), mapping=to_redis_mapping(message.model_dump()))
        pipe.zadd(
            REDIS_CONVERSATION_MESSAGES_KEY.format(conversation_id=message.conversation_id),
            {message.id: message.created_at.timestamp()},
        )

    async def create_conversation(self, user_one_id: str, user_two_id: str, fields: Optional[dict] = None) -> Optional[Conversation]:
        """Create the conversation for a pair.

        Returns None if the pair already has one; the caller should look it up
        again. A pair key left pointing at a missing record is reclaimed.
        """
        conversation = self._new_conversation(user_one_id, user_two_id, fields, utcnow())

        def queue(pipe, current):
            if current is not None:
                return None
            self._queue_conversation(pipe, conversation)
            return conversation

        with self._translate_errors("create conversation"):
            created, _ = await self._pair_transaction(user_one_id, user_two_id, queue)

        if created is None:
            logger.info(f"Conversation between {user_one_id} and {user_two_id} already exists")
            return None
        logger.info(f"Created conversation {conversation.id} between {user_one_id} and {user_two_id}")
        return created

    async def update_conversation(self, conversation_id: str, fields: dict, increment: Optional[str] = None) -> Conversation:
        """Set summary fields and optionally bump one unread counter, atomically."""
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        with self._translate_errors("update conversation"):
            async with self.redis_client.pipeline(transaction=True) as pipe:
                self._queue_update(pipe, conversation, fields, increment)
                pipe.hgetall(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id))
                results = await pipe.execute()

        logger.debug(f"Updated conversation {conversation_id} (increment: {increment})")
        return Conversation.model_validate(results[-1])

    async def create_message(self, fields: dict) -> Message:
        record = {"id": uuid.uuid4().hex, "created_at": utcnow()}
        record.update(fields)
        message = Message.model_validate(record)

        with self._translate_errors("create message"):
            async with self.redis_client.pipeline(transaction=True) as pipe:
                self._queue_message(pipe, message)
                await pipe.execute()

        logger.debug(f"Created message {message.id} in conversation {message.conversation_id}")
        return message

    async def record_message(self, sender_id: str, receiver_id: str, content: str) -> Tuple[Message, Conversation]:
        """Store a chat message and fold it into the pair's conversation.

        The first message creates the conversation with the sender as user one,
        unread counters (0, 1). Later messages set lastMessage/lastMessageAt and
        bump the receiver's counter. Conversation and message are written in a
        single MULTI/EXEC, so either all of it is stored or none of it.
        """
        now = utcnow()
        summary = {"last_message": content, "last_message_at": now}

        def queue(pipe, current):
            if current is None:
                conversation = self._new_conversation(
                    sender_id, receiver_id, dict(summary, unread_count_for_user_one=0, unread_count_for_user_two=1), now
                )
                self._queue_conversation(pipe, conversation)
            else:
                conversation = current
                self._queue_update(pipe, conversation, summary, conversation.unread_field_for(receiver_id))
            message = Message.model_validate({
                "id": uuid.uuid4().hex,
                "content": content,
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "conversation_id": conversation.id,
                "created_at": now,
            })
            self._queue_message(pipe, message)
            pipe.hgetall(REDIS_CONVERSATION_KEY.format(conversation_id=conversation.id))
            return message

        with self._translate_errors("record message"):
            message, results = await self._pair_transaction(sender_id, receiver_id, queue)

        conversation = Conversation.model_validate(results[-1])
        logger.debug(f"Recorded message {message.id} in conversation {conversation.id}")
        return message, conversation

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        """Conversations a user takes part in, most recently active first."""
        with self._translate_errors("list conversations"):
            conversation_ids = await self.redis_client.zrevrange(REDIS_USER_CONVERSATIONS_KEY.format(user_id=user_id), 0, -1)
            if not conversation_ids:
                return []
            async with self.redis_client.pipeline(transaction=False) as pipe:
                for conversation_id in conversation_ids:
                    pipe.hgetall(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id))
                rows = await pipe.execute()
        return [Conversation.model_validate(row) for row in rows if row]

    async def list_messages(self, conversation_id: str) -> List[Message]:
        """Messages of a conversation in creation order."""
        with self._translate_errors("list messages"):
            message_ids = await self.redis_client.zrange(REDIS_CONVERSATION_MESSAGES_KEY.format(conversation_id=conversation_id), 0, -1)
            if not message_ids:
                return []
            async with self.redis_client.pipeline(transaction=False) as pipe:
                for message_id in message_ids:
                    pipe.hgetall(REDIS_MESSAGE_KEY.format(message_id=message_id))
                rows = await pipe.execute()
        return [Message.model_validate(row) for row in rows if row]

    async def mark_read(self, conversation_id: str, user_id: str) -> Conversation:
        """Reset the unread counter that belongs to user_id."""
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        field = conversation.unread_field_for(user_id)
        if field is None:
            return conversation
        with self._translate_errors("mark conversation read"):
            await self.redis_client.hset(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id), field, 0)
        logger.debug(f"Reset {field} on conversation {conversation_id}")
        return conversation.model_copy(update={field: 0})


redis_backend = RedisBackend()
