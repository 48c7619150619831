"""Events pushed to clients over the event stream.

Each event is immutable and carries enough context (room, actor, payload) for
a client to update its view without a follow-up fetch.
"""
from typing import Literal, Optional

from pydantic import ConfigDict, Field

from schemas.base import CamelModel, utc_now_iso


class Event(CamelModel):
    model_config = ConfigDict(frozen=True)

    type: str
    timestamp: str = Field(default_factory=utc_now_iso)

    def encode(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class RoomEvent(Event):
    room_id: str


class MessagePayload(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    forum_id: str
    user_id: str
    user_name: str
    text: str
    timestamp: str
    edited: bool = False
    edited_at: Optional[str] = None


class ConnectedUser(CamelModel):
    id: str
    display_name: str


class ConnectedEvent(Event):
    type: Literal["connected"] = "connected"
    connection_id: str
    user: Optional[ConnectedUser] = None


class MessageEvent(RoomEvent):
    type: Literal["message"] = "message"
    message: MessagePayload


class MessageEditedEvent(RoomEvent):
    type: Literal["message_edited"] = "message_edited"
    message: MessagePayload


class MessageDeletedEvent(RoomEvent):
    type: Literal["message_deleted"] = "message_deleted"
    message_id: str


class UserJoinedEvent(RoomEvent):
    type: Literal["user_joined"] = "user_joined"
    user_id: str
    user_name: str
    participants: int


class UserLeftEvent(RoomEvent):
    type: Literal["user_left"] = "user_left"
    user_id: str
    user_name: str
    participants: int


class TypingEvent(RoomEvent):
    type: Literal["typing"] = "typing"
    user_id: str
    user_name: str
    is_typing: bool


class TypingUpdateEvent(RoomEvent):
    type: Literal["typing_update"] = "typing_update"
    typing_users: dict[str, str]


class ForumCreatedEvent(Event):
    type: Literal["forum_created"] = "forum_created"
    forum: dict
