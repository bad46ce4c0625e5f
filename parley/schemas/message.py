from datetime import datetime

from pydantic import BaseModel, Field

from parley.schemas.common import ObjectIdStr
from parley.schemas.user import UserBrief


class MessageCreate(BaseModel):
    content: str
    type: str = "text"  # 'text', 'image', 'file', 'audio', 'video', 'emoji'
    reply_to_id: ObjectIdStr | None = None


class DirectMessageCreate(MessageCreate):
    receivers: list[ObjectIdStr] = Field(min_length=1)


class MessageUpdate(BaseModel):
    content: str


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    sender: UserBrief
    content: str | None  # None once the message is deleted
    type: str = "text"
    tagged_users: list[UserBrief] = []
    reply_to_id: str | None = None
    level: int = 0
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    # Only set in listings, relative to the requesting member
    unread: bool | None = None
