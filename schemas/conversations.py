from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import Field

from schemas.events import CamelModel


class Conversation(CamelModel):
    id: str
    user_one_id: str
    user_two_id: str
    last_message: str = ""
    last_message_at: Optional[datetime] = None
    unread_count_for_user_one: int = 0
    unread_count_for_user_two: int = 0
    created_at: Optional[datetime] = None

    def unread_field_for(self, user_id: str) -> Optional[str]:
        """Name of the unread counter belonging to user_id, matched by identity.

        User one is checked first, so a self-conversation counts against user one.
        """
        if self.user_one_id == user_id:
            return "unread_count_for_user_one"
        if self.user_two_id == user_id:
            return "unread_count_for_user_two"
        return None

    def is_between(self, user_a: str, user_b: str) -> bool:
        return {self.user_one_id, self.user_two_id} == {user_a, user_b}


class Message(CamelModel):
    id: str
    content: str
    sender_id: str
    receiver_id: str
    conversation_id: str
    created_at: datetime


class NewMessage(Message):
    """Message as pushed to the receiver, with its UTC calendar date (YYYY-MM-DD)."""

    date: str

    @classmethod
    def from_message(cls, message: Message) -> "NewMessage":
        return cls(**message.model_dump(), date=message_date(message.created_at))


def message_date(created_at: datetime) -> str:
    if created_at.tzinfo is not None:
        created_at = created_at.astimezone(timezone.utc)
    return created_at.date().isoformat()


class CreateConversationRequest(CamelModel):
    receiver_id: str = Field(min_length=1)


class SendMessageRequest(CamelModel):
    receiver_id: str = Field(min_length=1)
    content: str = Field(min_length=1)


class ConversationListResponse(CamelModel):
    data: List[Conversation]


class GroupedMessagesResponse(CamelModel):
    conversation_id: str
    grouped_messages: Dict[str, List[Message]]
