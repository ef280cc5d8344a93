from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Optional


class CamelModel(BaseModel):
    """Snake case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InboundEvent(BaseModel):
    event: str
    data: dict = Field(default_factory=dict)


class OutboundEvent(CamelModel):
    event: str
    room_id: Optional[str] = None
    data: Any = None

    def to_wire(self) -> dict:
        # data goes out as given, nulls inside relayed payloads included
        wire = {"event": self.event}
        if self.room_id is not None:
            wire["roomId"] = self.room_id
        wire["data"] = self.data
        return wire


class JoinEvent(CamelModel):
    room_id: str = Field(min_length=1)
    user_id: Optional[str] = None
    callee_user_id: str = Field(min_length=1)


class SignalEvent(CamelModel):
    """offer, answer and iceCandidate. The payload is relayed untouched."""

    room_id: str = Field(min_length=1)
    payload: Any = None


class ChatSendEvent(CamelModel):
    sender_id: Optional[str] = None
    receiver_id: str = Field(min_length=1)
    content: str = Field(min_length=1)


class HangupEvent(CamelModel):
    user_id: Optional[str] = None


class IncomingCall(CamelModel):
    room_id: str
    caller_user_id: str


class PeerPresence(CamelModel):
    room_id: str
    user_id: str


class ErrorPayload(BaseModel):
    code: str
    message: str
