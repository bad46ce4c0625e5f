import re
from datetime import datetime, timezone

from bson import ObjectId
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import CHAR, TypeDecorator

OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


def new_object_id() -> str:
    return str(ObjectId())


def is_object_id(value) -> bool:
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.match(value))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from dialects without timezones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ObjectIdType(TypeDecorator):
    """24-character hex ObjectId stored as CHAR(24) on every dialect."""

    impl = CHAR(24)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        value = str(value)
        if not is_object_id(value):
            raise ValueError(f"Invalid ObjectId: {value!r}")
        return value.lower()

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return str(value).strip()


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class ObjectIdPrimaryKey:
    id: Mapped[str] = mapped_column(ObjectIdType(), primary_key=True, default=new_object_id)
