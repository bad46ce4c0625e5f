from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.models.base import Base, ObjectIdPrimaryKey, TimestampMixin


class User(Base, ObjectIdPrimaryKey, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # username and password are only set once registration is completed
    username: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )

    conversation_memberships = relationship("ConversationMember", back_populates="user")


class UserVerification(Base, ObjectIdPrimaryKey, TimestampMixin):
    __tablename__ = "user_verifications"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    otp: Mapped[str] = mapped_column(String(6), nullable=False)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PasswordReset(Base, ObjectIdPrimaryKey, TimestampMixin):
    __tablename__ = "password_resets"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # sha256 of the token handed to the user
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    # only set for the "otp" method
    otp: Mapped[str | None] = mapped_column(String(6), nullable=True)
    expired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
