from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.models.base import Base, ObjectIdPrimaryKey, ObjectIdType, TimestampMixin

MESSAGE_TYPES = ("text", "image", "file", "audio", "video", "emoji")

message_mentions = Table(
    "message_mentions",
    Base.metadata,
    Column(
        "message_id",
        ObjectIdType(),
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("user_id", ObjectIdType(), ForeignKey("users.id"), primary_key=True, index=True),
)


class Message(Base, ObjectIdPrimaryKey, TimestampMixin):
    __tablename__ = "messages"

    conversation_id: Mapped[str] = mapped_column(
        ObjectIdType(),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_id: Mapped[str] = mapped_column(
        ObjectIdType(), ForeignKey("users.id"), nullable=False, index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="text", server_default="text"
    )
    reply_to_id: Mapped[str | None] = mapped_column(
        ObjectIdType(), ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    sender = relationship("User")
    tagged_users = relationship("User", secondary=message_mentions)
