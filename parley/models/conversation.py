from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.models.base import Base, ObjectIdPrimaryKey, ObjectIdType, TimestampMixin

CONVERSATION_TYPES = ("individual", "group", "channel")


class Conversation(Base, ObjectIdPrimaryKey, TimestampMixin):
    __tablename__ = "conversations"

    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="individual", server_default="individual"
    )  # 'individual', 'group', 'channel'
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    thumbnail: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # Weak reference: no foreign key, only ever set together with the message insert
    last_message_id: Mapped[str | None] = mapped_column(ObjectIdType(), nullable=True)

    members = relationship(
        "ConversationMember",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationMember.position",
    )


class ConversationMember(Base, TimestampMixin):
    __tablename__ = "conversation_members"
    __table_args__ = (UniqueConstraint("conversation_id", "user_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(
        ObjectIdType(),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        ObjectIdType(), ForeignKey("users.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # NULL means the member never opened the conversation
    last_entered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    conversation = relationship("Conversation", back_populates="members")
    user = relationship("User", back_populates="conversation_memberships")
