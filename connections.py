import asyncio
import json
import uuid
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

from logging_config import get_logger
from schemas.events import OutboundEvent

logger = get_logger(__name__)


class Connection:
    """A live transport session. The endpoint that accepted the socket owns it."""

    def __init__(self, connection_id: str, websocket: WebSocket, user_id: Optional[str] = None):
        self.connection_id = connection_id
        self.websocket = websocket
        self.user_id = user_id

    def __repr__(self):
        return f"Connection({self.connection_id!r}, user_id={self.user_id!r})"


class ConnectionManager:
    """Tracks live connections per user and per room, and fans events out to them.

    Like the room registry, every bookkeeping method is synchronous. Only the
    send helpers await, and they snapshot the target set before the first await.
    """

    def __init__(self):
        # Format: {connection_id: Connection}
        self._connections: Dict[str, Connection] = {}
        # Format: {user_id: {connection_id}}
        self._user_connections: Dict[str, Set[str]] = {}
        # Format: {room_id: {connection_id}}
        self._room_connections: Dict[str, Set[str]] = {}

    # Bookkeeping

    def register(self, websocket: WebSocket, user_id: Optional[str] = None) -> Connection:
        connection = Connection(str(uuid.uuid4()), websocket)
        self._connections[connection.connection_id] = connection
        if user_id:
            self.bind_user(connection.connection_id, user_id)
        logger.debug(f"Registered connection {connection.connection_id} (user: {user_id}, total: {len(self._connections)})")
        return connection

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """Forget a connection and drop it from every room group."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None
        if connection.user_id:
            user_connections = self._user_connections.get(connection.user_id)
            if user_connections is not None:
                user_connections.discard(connection_id)
                if not user_connections:
                    del self._user_connections[connection.user_id]
        for room_id in list(self._room_connections):
            self.unsubscribe(room_id, connection_id)
        logger.debug(f"Unregistered connection {connection_id} (total: {len(self._connections)})")
        return connection

    def bind_user(self, connection_id: str, user_id: str):
        connection = self._connections[connection_id]
        if connection.user_id == user_id:
            self._user_connections.setdefault(user_id, set()).add(connection_id)
            return
        if connection.user_id is not None:
            raise ValueError(f"Connection {connection_id} is already bound to user {connection.user_id}")
        connection.user_id = user_id
        self._user_connections.setdefault(user_id, set()).add(connection_id)
        logger.debug(f"Bound connection {connection_id} to user {user_id}")

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def user_of(self, connection_id: str) -> Optional[str]:
        connection = self._connections.get(connection_id)
        return connection.user_id if connection else None

    def connections_of(self, user_id: str) -> Set[str]:
        return set(self._user_connections.get(user_id, ()))

    def subscribe(self, room_id: str, connection_id: str):
        self._room_connections.setdefault(room_id, set()).add(connection_id)

    def unsubscribe(self, room_id: str, connection_id: str):
        subscribers = self._room_connections.get(room_id)
        if subscribers is None:
            return
        subscribers.discard(connection_id)
        if not subscribers:
            del self._room_connections[room_id]

    def unsubscribe_user(self, room_id: str, user_id: str):
        for connection_id in self.connections_of(user_id):
            self.unsubscribe(room_id, connection_id)

    def subscribers(self, room_id: str) -> Set[str]:
        return set(self._room_connections.get(room_id, ()))

    def drop_room(self, room_id: str):
        self._room_connections.pop(room_id, None)

    def __len__(self) -> int:
        return len(self._connections)

    # Delivery

    async def send(self, connection_id: str, event: str, data: Any = None, room_id: Optional[str] = None) -> int:
        return await self._deliver([connection_id], OutboundEvent(event=event, room_id=room_id, data=data))

    async def broadcast_to_room(
        self,
        room_id: str,
        event: str,
        data: Any = None,
        exclude_connection_id: Optional[str] = None,
    ) -> int:
        """Send to every connection subscribed to the room except the excluded one."""
        targets = [cid for cid in self.subscribers(room_id) if cid != exclude_connection_id]
        return await self._deliver(targets, OutboundEvent(event=event, room_id=room_id, data=data))

    async def notify_user(self, user_id: str, event: str, data: Any = None, room_id: Optional[str] = None) -> int:
        """Send to all active connections of a user."""
        targets = self.connections_of(user_id)
        if not targets:
            logger.debug(f"User {user_id} has no active connections for {event}")
        return await self._deliver(targets, OutboundEvent(event=event, room_id=room_id, data=data))

    async def _deliver(self, connection_ids: Iterable[str], message: OutboundEvent) -> int:
        text = json.dumps(message.to_wire())
        send_tasks = []
        targets: List[str] = []
        for connection_id in connection_ids:
            connection = self._connections.get(connection_id)
            if connection is None:
                continue
            targets.append(connection_id)
            send_tasks.append(connection.websocket.send_text(text))
        if not send_tasks:
            return 0

        results = await asyncio.gather(*send_tasks, return_exceptions=True)
        delivered = 0
        for connection_id, result in zip(targets, results):
            if isinstance(result, Exception):
                # The endpoint owning the socket reconciles it when its receive loop ends
                logger.warning(f"Error sending {message.event} to connection {connection_id}: {result}")
            else:
                delivered += 1
        logger.debug(f"Delivered {message.event} to {delivered}/{len(targets)} connection(s)")
        return delivered


connection_manager = ConnectionManager()
