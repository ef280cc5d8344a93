from typing import Dict, FrozenSet, List, Set
from logging_config import get_logger

logger = get_logger(__name__)


class RoomRegistry:
    """In-memory map of call room id to the user ids participating in it.

    Holds no transport handles and performs no I/O. Every method is synchronous
    and contains no await point, so on the single asyncio event loop a
    check-then-mutate sequence inside one method cannot interleave with another
    handler. No lock is taken for that reason; moving the registry to a
    multi-threaded server would need a lock around each method.
    """

    def __init__(self):
        # Format: {room_id: {user_id}}
        self._rooms: Dict[str, Set[str]] = {}
        # Callees with an outstanding incoming call. Kept until the callee joins,
        # even after the room empties or is swept
        # Format: {room_id: {callee_user_id}}
        self._invited: Dict[str, Set[str]] = {}

    def join(self, room_id: str, user_id: str) -> bool:
        """Add a user to a room, creating the room on first use.

        Returns False if the user was already a member.
        """
        members = self._rooms.setdefault(room_id, set())
        self._clear_invite(room_id, user_id)
        if user_id in members:
            logger.debug(f"User {user_id} already in room {room_id}")
            return False
        members.add(user_id)
        logger.debug(f"User {user_id} joined room {room_id} (members: {len(members)})")
        return True

    def leave(self, room_id: str, user_id: str) -> bool:
        members = self._rooms.get(room_id)
        if not members or user_id not in members:
            return False
        members.discard(user_id)
        logger.debug(f"User {user_id} left room {room_id} (members: {len(members)})")
        return True

    def leave_all(self, user_id: str) -> List[str]:
        """Remove a user from every room. Returns the rooms it was removed from."""
        left = [room_id for room_id in list(self._rooms) if self.leave(room_id, user_id)]
        if left:
            logger.info(f"User {user_id} removed from {len(left)} room(s): {left}")
        return left

    def members_of(self, room_id: str) -> FrozenSet[str]:
        return frozenset(self._rooms.get(room_id, ()))

    def contains(self, room_id: str, user_id: str) -> bool:
        return user_id in self._rooms.get(room_id, ())

    def exists(self, room_id: str) -> bool:
        return room_id in self._rooms

    def rooms_of(self, user_id: str) -> List[str]:
        return [room_id for room_id, members in self._rooms.items() if user_id in members]

    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def mark_invited(self, room_id: str, callee_id: str) -> bool:
        """Record an incoming call for a callee that has not joined the room yet.

        Returns True only when the callee should be notified: it is not a
        member and has not been rung for this room since it last joined.
        """
        if self.contains(room_id, callee_id):
            return False
        invited = self._invited.setdefault(room_id, set())
        if callee_id in invited:
            logger.debug(f"Callee {callee_id} already has a pending call for room {room_id}")
            return False
        invited.add(callee_id)
        return True

    def _clear_invite(self, room_id: str, user_id: str):
        invited = self._invited.get(room_id)
        if invited is None:
            return
        invited.discard(user_id)
        if not invited:
            del self._invited[room_id]

    def pending_invites(self, room_id: str) -> FrozenSet[str]:
        return frozenset(self._invited.get(room_id, ()))

    def sweep_empty(self) -> List[str]:
        """Drop rooms that have no members left."""
        empty = [room_id for room_id, members in self._rooms.items() if not members]
        for room_id in empty:
            del self._rooms[room_id]
        if empty:
            logger.info(f"Swept {len(empty)} empty room(s)")
        return empty

    def __len__(self) -> int:
        return len(self._rooms)


room_registry = RoomRegistry()
