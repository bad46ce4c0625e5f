"""Repository functions over conversations and messages.

Related records (members, senders, tagged users) are only loaded when a
function asks for them explicitly with ``selectinload``; the models carry no
implicit eager loading.
"""
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from parley.errors import ForbiddenError, NotFoundError
from parley.models.base import utcnow
from parley.models.conversation import Conversation, ConversationMember
from parley.models.message import Message, message_mentions
from parley.models.user import User
from parley.services.pagination import Pagination
from parley.services.users import is_member


def _with_members():
    return selectinload(Conversation.members).selectinload(ConversationMember.user)


def _with_message_relations():
    return (selectinload(Message.sender), selectinload(Message.tagged_users))


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

async def get_conversation(db: AsyncSession, conversation_id: str) -> Conversation | None:
    result = await db.execute(
        select(Conversation)
        .options(_with_members())
        .where(Conversation.id == conversation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_member_conversation(
    db: AsyncSession, conversation_id: str, user_id: str
) -> Conversation:
    conversation = await get_conversation(db, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    if not is_member(conversation, user_id):
        raise ForbiddenError("You are not a member of this conversation")
    return conversation


async def find_conversation_by_members(
    db: AsyncSession,
    member_ids: set[str],
    conversation_type: str,
) -> Conversation | None:
    """Find a conversation whose member set matches *exactly*."""
    count = len(member_ids)

    # Conversations that have exactly `count` members
    exact_count = (
        select(ConversationMember.conversation_id)
        .group_by(ConversationMember.conversation_id)
        .having(func.count(ConversationMember.id) == count)
    )

    candidate_q = select(Conversation.id).where(
        and_(
            Conversation.type == conversation_type,
            Conversation.id.in_(exact_count),
        )
    )

    # Every requested member must be present
    for uid in member_ids:
        member_sub = select(ConversationMember.conversation_id).where(
            ConversationMember.user_id == uid
        )
        candidate_q = candidate_q.where(Conversation.id.in_(member_sub))

    result = await db.execute(candidate_q.order_by(Conversation.created_at).limit(1))
    conversation_id = result.scalar_one_or_none()
    if conversation_id is None:
        return None
    return await get_conversation(db, conversation_id)


async def create_conversation(
    db: AsyncSession,
    member_ids: list[str],
    conversation_type: str,
    *,
    entered_by: str | None = None,
    name: str | None = None,
    thumbnail: str | None = None,
) -> Conversation:
    now = utcnow()
    conversation = Conversation(
        type=conversation_type,
        name=name,
        thumbnail=thumbnail,
        members=[
            ConversationMember(
                user_id=uid,
                position=position,
                last_entered_at=now if uid == entered_by else None,
            )
            for position, uid in enumerate(member_ids)
        ],
    )
    db.add(conversation)
    await db.flush()
    return await get_conversation(db, conversation.id)


async def list_conversations(
    db: AsyncSession,
    user_id: str,
    page: Pagination,
    q: str | None = None,
    conversation_type: str | None = None,
) -> tuple[list[Conversation], int]:
    my_conversations = select(ConversationMember.conversation_id).where(
        ConversationMember.user_id == user_id
    )
    criteria = [Conversation.id.in_(my_conversations)]

    if conversation_type:
        criteria.append(Conversation.type == conversation_type)

    if q:
        pattern = f"%{q}%"
        matching_members = (
            select(ConversationMember.conversation_id)
            .join(User, User.id == ConversationMember.user_id)
            .where(
                and_(
                    ConversationMember.user_id != user_id,
                    or_(User.username.ilike(pattern), User.email.ilike(pattern)),
                )
            )
        )
        criteria.append(
            or_(Conversation.name.ilike(pattern), Conversation.id.in_(matching_members))
        )

    count_result = await db.execute(select(func.count(Conversation.id)).where(*criteria))
    total = count_result.scalar_one()

    result = await db.execute(
        select(Conversation)
        .options(_with_members())
        .where(*criteria)
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .offset(page.skip)
        .limit(page.limit)
    )
    return list(result.scalars().all()), total


async def set_last_message(db: AsyncSession, conversation_id: str, message_id: str) -> None:
    await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(last_message_id=message_id, updated_at=utcnow())
    )


async def update_conversation_details(
    db: AsyncSession, conversation_id: str, **values
) -> None:
    await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(updated_at=utcnow(), **values)
    )


async def set_last_entered(db: AsyncSession, conversation_id: str, user_id: str, when) -> None:
    # Only this member's row is written; other members and the conversation row are untouched
    await db.execute(
        update(ConversationMember)
        .where(
            and_(
                ConversationMember.conversation_id == conversation_id,
                ConversationMember.user_id == user_id,
            )
        )
        .values(last_entered_at=when)
    )


async def add_members(
    db: AsyncSession, conversation: Conversation, user_ids: list[str]
) -> list[str]:
    """Append *user_ids* that are not members yet. Returns the ones added."""
    existing = {m.user_id for m in conversation.members}
    next_position = max((m.position for m in conversation.members), default=-1) + 1
    added = []
    for uid in user_ids:
        if uid in existing or uid in added:
            continue
        db.add(
            ConversationMember(
                conversation_id=conversation.id, user_id=uid, position=next_position
            )
        )
        next_position += 1
        added.append(uid)
    if added:
        await db.flush()
        await update_conversation_details(db, conversation.id)
    return added


async def remove_members(
    db: AsyncSession, conversation_id: str, user_ids: list[str]
) -> int:
    """Remove *user_ids* from the conversation. Returns the remaining member count."""
    await db.execute(
        delete(ConversationMember).where(
            and_(
                ConversationMember.conversation_id == conversation_id,
                ConversationMember.user_id.in_(user_ids),
            )
        )
    )
    await update_conversation_details(db, conversation_id)
    count_result = await db.execute(
        select(func.count(ConversationMember.id)).where(
            ConversationMember.conversation_id == conversation_id
        )
    )
    return count_result.scalar_one()


async def delete_conversation(db: AsyncSession, conversation_id: str) -> None:
    message_ids = select(Message.id).where(Message.conversation_id == conversation_id)
    await db.execute(
        delete(message_mentions).where(message_mentions.c.message_id.in_(message_ids))
    )
    await db.execute(delete(Message).where(Message.conversation_id == conversation_id))
    await db.execute(
        delete(ConversationMember).where(ConversationMember.conversation_id == conversation_id)
    )
    await db.execute(delete(Conversation).where(Conversation.id == conversation_id))


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

async def get_message(db: AsyncSession, message_id: str) -> Message | None:
    result = await db.execute(
        select(Message)
        .options(*_with_message_relations())
        .where(Message.id == message_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_messages_by_ids(db: AsyncSession, message_ids: list[str]) -> dict[str, Message]:
    if not message_ids:
        return {}
    result = await db.execute(
        select(Message).options(*_with_message_relations()).where(Message.id.in_(message_ids))
    )
    return {message.id: message for message in result.scalars().all()}


async def list_messages(
    db: AsyncSession, conversation_id: str, page: Pagination
) -> tuple[list[Message], int]:
    count_result = await db.execute(
        select(func.count(Message.id)).where(Message.conversation_id == conversation_id)
    )
    total = count_result.scalar_one()

    result = await db.execute(
        select(Message)
        .options(*_with_message_relations())
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .offset(page.skip)
        .limit(page.limit)
    )
    return list(result.scalars().all()), total


async def update_message(db: AsyncSession, message_id: str, **values) -> None:
    await db.execute(
        update(Message).where(Message.id == message_id).values(updated_at=utcnow(), **values)
    )
