"""Message send/edit/delete pipeline.

Writes run inside one ``transaction()`` unit; notifications go out only after
that unit has committed.
"""
import logging

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from parley.database import get_db, transaction
from parley.errors import ForbiddenError, NotFoundError, ValidationError
from parley.models.base import utcnow
from parley.models.message import MESSAGE_TYPES, Message
from parley.schemas.message import MessageOut
from parley.services.conversations import resolve_conversation
from parley.services.mentions import extract_mentions, resolve_mentions
from parley.services.notifier import Notifier, get_notifier
from parley.services.pagination import Pagination
from parley.services.presenters import conversation_out, message_out
from parley.services.seen import is_unread
from parley.services.store import (
    get_conversation,
    get_member_conversation,
    get_message,
    list_messages,
    set_last_message,
    update_message,
)

logger = logging.getLogger(__name__)


def validate_content(content: str | None) -> str:
    if content is None or not content.strip():
        raise ValidationError.for_field("content", "Message content is required")
    return content


def validate_message(content: str | None, message_type: str) -> str:
    errors = []
    if content is None or not content.strip():
        errors.append({"field": "content", "message": "Message content is required"})
    if message_type not in MESSAGE_TYPES:
        errors.append({
            "field": "type",
            "message": f"Invalid message type, must be one of {', '.join(MESSAGE_TYPES)}",
        })
    if errors:
        raise ValidationError("Invalid message", errors=errors)
    return content


class MessagePipeline:
    def __init__(self, db: AsyncSession, notifier: Notifier):
        self.db = db
        self.notifier = notifier

    async def send(
        self,
        sender_id: str,
        content: str,
        message_type: str = "text",
        *,
        receivers: list[str] | None = None,
        conversation_id: str | None = None,
        reply_to_id: str | None = None,
    ) -> MessageOut:
        validate_message(content, message_type)
        if (receivers is None) == (conversation_id is None):
            raise ValidationError("Either receivers or a conversation is required")

        async with transaction(self.db):
            if conversation_id is not None:
                conversation = await get_member_conversation(self.db, conversation_id, sender_id)
                created = False
            else:
                conversation, created = await resolve_conversation(
                    self.db, receivers, sender_id
                )

            level = 0
            if reply_to_id is not None:
                parent = await get_message(self.db, reply_to_id)
                if parent is None or parent.conversation_id != conversation.id:
                    raise ValidationError.for_field(
                        "reply_to_id", "Replied message is not part of this conversation"
                    )
                level = parent.level + 1

            tagged_users = await resolve_mentions(self.db, extract_mentions(content))

            message = Message(
                conversation_id=conversation.id,
                sender_id=sender_id,
                content=content,
                type=message_type,
                reply_to_id=reply_to_id,
                level=level,
                tagged_users=tagged_users,
            )
            self.db.add(message)
            await self.db.flush()
            message_id = message.id

            await set_last_message(self.db, conversation.id, message_id)
            conversation = await get_conversation(self.db, conversation.id)

            message = await get_message(self.db, message_id)
            out = message_out(message)
            conversation_view = await conversation_out(
                self.db, conversation, sender_id, last_message=message
            )

        logger.debug("Message %s stored in conversation %s", out.id, conversation_view.id)
        await self.notifier.notify_new_message(conversation_view, out, created)
        return out

    async def _load_own_message(self, message_id: str, user_id: str) -> Message:
        message = await get_message(self.db, message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.sender_id != user_id:
            raise ForbiddenError("You are not the sender of this message")
        return message

    async def edit(self, message_id: str, user_id: str, content: str) -> MessageOut:
        validate_content(content)

        async with transaction(self.db):
            message = await self._load_own_message(message_id, user_id)
            conversation = await get_member_conversation(
                self.db, message.conversation_id, user_id
            )
            if message.deleted_at is not None:
                raise ForbiddenError("Message has been deleted, cannot be edited")
            if message.type != "text":
                raise ForbiddenError("Only text messages can be edited")
            if message.content == content:
                return message_out(message)

            await update_message(self.db, message_id, content=content)
            message = await get_message(self.db, message_id)
            out = message_out(message)
            conversation_view = await conversation_out(
                self.db, conversation, user_id, last_message=message
            )
            is_last = conversation.last_message_id == message_id

        await self.notifier.notify_message_updated(conversation_view, out, is_last)
        return out

    async def delete(self, message_id: str, user_id: str) -> None:
        async with transaction(self.db):
            message = await self._load_own_message(message_id, user_id)
            conversation = await get_member_conversation(
                self.db, message.conversation_id, user_id
            )
            if message.deleted_at is not None:
                raise ForbiddenError("Message has been deleted")

            await update_message(self.db, message_id, deleted_at=utcnow())
            message = await get_message(self.db, message_id)
            out = message_out(message)
            conversation_view = await conversation_out(self.db, conversation, user_id)
            is_last = conversation.last_message_id == message_id

        await self.notifier.notify_message_deleted(conversation_view, out, is_last)

    async def page_messages(self, conversation_id: str, user_id: str, page: Pagination) -> dict:
        conversation = await get_member_conversation(self.db, conversation_id, user_id)
        last_entered_at = next(
            m.last_entered_at for m in conversation.members if m.user_id == user_id
        )
        messages, total = await list_messages(self.db, conversation_id, page)
        return page.paginate_result(
            total,
            [
                message_out(
                    m,
                    unread=m.deleted_at is None
                    and is_unread(m.created_at, m.sender_id, user_id, last_entered_at),
                )
                for m in messages
            ],
        )


def get_pipeline(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> MessagePipeline:
    return MessagePipeline(db, notifier)
