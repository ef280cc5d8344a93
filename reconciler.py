from typing import List, Optional

from connections import ConnectionManager, connection_manager
from identity import claim_user_id
from logging_config import get_logger
from registry import RoomRegistry, room_registry
from schemas.events import PeerPresence

logger = get_logger(__name__)


class PresenceReconciler:
    """Removes a departing user from every room and tells the remaining peers."""

    def __init__(self, registry: RoomRegistry, connections: ConnectionManager):
        self.registry = registry
        self.connections = connections

    async def hangup(self, connection_id: str, user_id: Optional[str] = None) -> List[str]:
        """Explicit end of call by a user."""
        user_id = claim_user_id(self.connections, connection_id, user_id)
        logger.info(f"User {user_id} hung up on connection {connection_id}")
        return await self.leave_all(user_id)

    async def transport_closed(self, connection_id: str) -> List[str]:
        """Connection went away without a hangup.

        Room membership is keyed by user id, so the connection is mapped back to
        its user before reconciling. A connection that never identified a user
        can only have been recorded under its own id.
        """
        connection = self.connections.unregister(connection_id)
        identity = connection.user_id if connection and connection.user_id else connection_id
        logger.info(f"Connection {connection_id} closed, reconciling {identity}")
        return await self.leave_all(identity)

    async def leave_all(self, identity: str) -> List[str]:
        left_rooms = self.registry.leave_all(identity)
        # Drop every subscription of the departing user before announcing, so
        # none of its own connections get the peerLeft
        for room_id in left_rooms:
            self.connections.unsubscribe_user(room_id, identity)
        for room_id in left_rooms:
            await self.connections.broadcast_to_room(
                room_id,
                "peerLeft",
                PeerPresence(room_id=room_id, user_id=identity).model_dump(by_alias=True),
            )
        return left_rooms


reconciler = PresenceReconciler(room_registry, connection_manager)
