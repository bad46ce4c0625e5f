from datetime import datetime

from pydantic import BaseModel, Field

from parley.schemas.common import ObjectIdStr
from parley.schemas.message import MessageOut
from parley.schemas.user import UserBrief


class GroupCreate(BaseModel):
    members: list[ObjectIdStr] = Field(min_length=1)
    type: str = "group"  # 'group' or 'channel'
    name: str | None = Field(default=None, max_length=100)
    thumbnail: str | None = Field(default=None, max_length=512)


class ConversationUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=100)
    thumbnail: str | None = Field(default=None, max_length=512)


class MembersChange(BaseModel):
    members: list[ObjectIdStr] = Field(min_length=1)


class ReceiversQuery(BaseModel):
    receivers: list[ObjectIdStr] = Field(min_length=1)


class ConversationOut(BaseModel):
    id: str
    type: str
    name: str | None = None
    thumbnail: str | None = None
    members: list[UserBrief]
    last_message: MessageOut | None = None
    last_time_enter_chat: dict[str, datetime] = {}
    unread_count: int = 0
    created_at: datetime
    updated_at: datetime


class SeenOut(BaseModel):
    conversation_id: str
    user_id: str
    seen_at: datetime
