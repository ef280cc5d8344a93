from fastapi import APIRouter, HTTPException, Request

from connections import connection_manager
from logging_config import get_logger
from registry import room_registry
from schemas.rooms import RoomDetailsResponse, RoomListResponse, RoomSummary

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/", response_model=RoomListResponse)
async def list_rooms(request: Request):
    """List call rooms currently held in memory, including emptied ones not yet swept."""
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room list request from {client_host}")
    rooms = [
        RoomSummary(
            room_id=room_id,
            member_count=len(room_registry.members_of(room_id)),
            connection_count=len(connection_manager.subscribers(room_id)),
        )
        for room_id in room_registry.room_ids()
    ]
    return RoomListResponse(rooms=rooms)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Get the participants of a call room.

    Returns:
    - room_id: Room identifier chosen by the caller
    - members: User ids currently in the room
    - member_count: Number of members
    - connection_count: Live connections subscribed to the room's broadcasts
    - pending_callees: Users rung for this room who have not joined yet
    - is_empty: Whether everybody has left (the room is dropped by the next sweep)
    """
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room details request for {room_id} from {client_host}")

    if not room_registry.exists(room_id):
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    members = sorted(room_registry.members_of(room_id))
    return RoomDetailsResponse(
        room_id=room_id,
        members=members,
        member_count=len(members),
        connection_count=len(connection_manager.subscribers(room_id)),
        pending_callees=sorted(room_registry.pending_invites(room_id)),
        is_empty=not members,
    )
