from sqlalchemy.ext.asyncio import AsyncSession

from parley.models.conversation import Conversation
from parley.models.message import Message
from parley.schemas.conversation import ConversationOut
from parley.schemas.message import MessageOut
from parley.schemas.user import UserBrief
from parley.services.seen import unread_counts
from parley.services.store import get_messages_by_ids


def message_out(message: Message, unread: bool | None = None) -> MessageOut:
    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        sender=UserBrief.model_validate(message.sender),
        content=None if message.deleted_at else message.content,
        type=message.type,
        tagged_users=[UserBrief.model_validate(u) for u in message.tagged_users],
        reply_to_id=message.reply_to_id,
        level=message.level,
        created_at=message.created_at,
        updated_at=message.updated_at,
        deleted_at=message.deleted_at,
        unread=unread,
    )


async def conversation_outs(
    db: AsyncSession,
    conversations: list[Conversation],
    viewer_id: str,
    last_messages: dict[str, Message] | None = None,
) -> list[ConversationOut]:
    """Build outputs for a page of conversations with batched lookups."""
    last_messages = dict(last_messages or {})
    missing = [
        c.last_message_id
        for c in conversations
        if c.last_message_id and c.last_message_id not in last_messages
    ]
    last_messages.update(await get_messages_by_ids(db, missing))
    counts = await unread_counts(db, viewer_id, [c.id for c in conversations])

    outs = []
    for conversation in conversations:
        last = last_messages.get(conversation.last_message_id)
        outs.append(
            ConversationOut(
                id=conversation.id,
                type=conversation.type,
                name=conversation.name,
                thumbnail=conversation.thumbnail,
                members=[UserBrief.model_validate(m.user) for m in conversation.members],
                last_message=message_out(last) if last else None,
                last_time_enter_chat={
                    m.user_id: m.last_entered_at
                    for m in conversation.members
                    if m.last_entered_at is not None
                },
                unread_count=counts.get(conversation.id, 0),
                created_at=conversation.created_at,
                updated_at=conversation.updated_at,
            )
        )
    return outs


async def conversation_out(
    db: AsyncSession,
    conversation: Conversation,
    viewer_id: str,
    last_message: Message | None = None,
) -> ConversationOut:
    last_messages = {last_message.id: last_message} if last_message else None
    outs = await conversation_outs(db, [conversation], viewer_id, last_messages)
    return outs[0]
