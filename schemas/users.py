from typing import Optional

from pydantic import Field

from schemas.base import CamelModel


class CreateUserRequest(CamelModel):
    display_name: Optional[str] = None
    about_me: Optional[str] = None
    interests: Optional[list[str]] = None


class SignOutRequest(CamelModel):
    user_id: Optional[str] = None


class UserResponse(CamelModel):
    id: str
    display_name: str
    about_me: str = ""
    interests: list[str] = Field(default_factory=list)
    joined_at: str
    last_active: str
    message_count: int = 0
    forums_created: int = 0
    discussions_joined: list[str] = Field(default_factory=list)
    is_online: bool = False
