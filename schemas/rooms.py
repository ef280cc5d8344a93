from pydantic import BaseModel
from typing import List


class RoomSummary(BaseModel):
    room_id: str
    member_count: int
    connection_count: int


class RoomListResponse(BaseModel):
    rooms: List[RoomSummary]


class RoomDetailsResponse(BaseModel):
    room_id: str
    members: List[str]
    member_count: int
    connection_count: int
    pending_callees: List[str]
    is_empty: bool
