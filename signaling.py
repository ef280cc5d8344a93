from typing import Any, Optional

from connections import ConnectionManager, connection_manager
from identity import claim_user_id
from logging_config import get_logger
from registry import RoomRegistry, room_registry
from schemas.events import IncomingCall, PeerPresence

logger = get_logger(__name__)


class SignalingRouter:
    """Routes call signaling events between the connections of a room.

    Payloads of offer/answer/iceCandidate are never inspected; they are
    forwarded as received to every other connection in the room.
    """

    def __init__(self, registry: RoomRegistry, connections: ConnectionManager):
        self.registry = registry
        self.connections = connections

    async def join(self, connection_id: str, room_id: str, user_id: Optional[str], callee_user_id: str) -> str:
        user_id = claim_user_id(self.connections, connection_id, user_id)

        # Membership and subscription are settled before the first await so any
        # broadcast racing with this join already sees the new member
        self.registry.join(room_id, user_id)
        self.connections.subscribe(room_id, connection_id)
        should_ring = self.registry.mark_invited(room_id, callee_user_id)
        logger.info(f"User {user_id} joined room {room_id} (callee: {callee_user_id}, ring: {should_ring})")

        if should_ring:
            await self.connections.notify_user(
                callee_user_id,
                "incomingCall",
                IncomingCall(room_id=room_id, caller_user_id=user_id).model_dump(by_alias=True),
            )

        await self.connections.broadcast_to_room(
            room_id,
            "peerJoined",
            PeerPresence(room_id=room_id, user_id=user_id).model_dump(by_alias=True),
            exclude_connection_id=connection_id,
        )
        return user_id

    async def offer(self, connection_id: str, room_id: str, payload: Any) -> int:
        return await self._relay(connection_id, room_id, "offer", payload)

    async def answer(self, connection_id: str, room_id: str, payload: Any) -> int:
        return await self._relay(connection_id, room_id, "answer", payload)

    async def ice_candidate(self, connection_id: str, room_id: str, payload: Any) -> int:
        return await self._relay(connection_id, room_id, "iceCandidate", payload)

    async def _relay(self, connection_id: str, room_id: str, event: str, payload: Any) -> int:
        delivered = await self.connections.broadcast_to_room(room_id, event, payload, exclude_connection_id=connection_id)
        logger.debug(f"Relayed {event} from connection {connection_id} in room {room_id} to {delivered} peer(s)")
        return delivered


signaling = SignalingRouter(room_registry, connection_manager)
