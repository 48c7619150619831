from typing import Optional

from schemas.base import CamelModel
from schemas.events import MessagePayload


class SendMessageRequest(CamelModel):
    forum_id: Optional[str] = None
    user_id: Optional[str] = None
    text: Optional[str] = None


class EditMessageRequest(CamelModel):
    message_id: Optional[str] = None
    user_id: Optional[str] = None
    text: Optional[str] = None


class DeleteMessageRequest(CamelModel):
    message_id: Optional[str] = None
    user_id: Optional[str] = None


class TypingRequest(CamelModel):
    forum_id: Optional[str] = None
    user_id: Optional[str] = None


class MessageListResponse(CamelModel):
    messages: list[MessagePayload]
    has_more: bool
    total: int


class SuccessResponse(CamelModel):
    success: bool = True
