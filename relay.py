import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Dict, Tuple, TypeVar

from backend import RedisBackend, redis_backend
from connections import ConnectionManager, connection_manager
from constants import PERSISTENCE_TIMEOUT_SECONDS
from errors import PersistenceError, ValidationError
from logging_config import get_logger
from redis_keys import conversation_pair_key
from schemas.conversations import Conversation, Message, NewMessage

logger = get_logger(__name__)

T = TypeVar("T")


class KeyedLock:
    """One asyncio.Lock per key, dropped again once nobody holds or waits for it."""

    def __init__(self):
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)


class MessageRelay:
    """Persists chat messages and pushes them to the receiver's connections.

    The message and its conversation update are stored in one transaction
    before anything is sent, so a failure leaves neither a partial record nor
    a notification behind. Sends between the same pair of users are serialized
    so concurrent messages cannot lose an unread increment.
    """

    def __init__(self, store: RedisBackend, connections: ConnectionManager, timeout: float = PERSISTENCE_TIMEOUT_SECONDS):
        self.store = store
        self.connections = connections
        self.timeout = timeout
        self._pair_locks = KeyedLock()

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Timed out after {self.timeout}s during {operation}")
            raise PersistenceError(f"Timed out during {operation}") from e

    async def send_message(self, sender_id: str, receiver_id: str, content: str) -> Tuple[Message, Conversation]:
        if not sender_id or not receiver_id:
            raise ValidationError("senderId and receiverId are required")
        if not content:
            raise ValidationError("Content is required")

        async with self._pair_locks.hold(conversation_pair_key(sender_id, receiver_id)):
            message, conversation = await self._call(
                "record message", self.store.record_message(sender_id, receiver_id, content)
            )

        logger.info(f"Message {message.id} from {sender_id} to {receiver_id} in conversation {conversation.id}")
        await self.connections.notify_user(
            receiver_id, "newMessage", NewMessage.from_message(message).model_dump(mode="json", by_alias=True)
        )
        await self.connections.notify_user(
            receiver_id, "conversationUpdated", conversation.model_dump(mode="json", by_alias=True)
        )
        return message, conversation


relay = MessageRelay(redis_backend, connection_manager)
