from typing import Optional

from schemas.base import CamelModel


class CreateForumRequest(CamelModel):
    title: Optional[str] = None
    topic: Optional[str] = None
    host_id: Optional[str] = None


class MembershipRequest(CamelModel):
    user_id: Optional[str] = None


class ForumResponse(CamelModel):
    id: str
    title: str
    topic: str
    host: str
    host_id: str
    participants: int = 0
    is_active: bool = False
    created_at: str
    last_activity: str


class LeaveForumResponse(CamelModel):
    success: bool
    participants: int
