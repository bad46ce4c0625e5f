"""Conversation resolution and group membership rules."""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from parley.errors import ForbiddenError, NotFoundError, ValidationError
from parley.models.conversation import Conversation
from parley.models.user import User
from parley.services.store import (
    add_members,
    create_conversation,
    delete_conversation,
    find_conversation_by_members,
    remove_members,
)
from parley.services.users import count_users_matching

logger = logging.getLogger(__name__)

GROUP_TYPES = ("group", "channel")


def derive_members(receiver_ids: list[str], requester_id: str) -> list[str]:
    """Receivers (deduplicated, in order) followed by the requester."""
    receivers = list(dict.fromkeys(receiver_ids))
    if requester_id in receivers:
        raise ValidationError.for_field("receivers", "You cannot send a message to yourself")
    if not receivers:
        raise ValidationError.for_field("receivers", "At least one receiver is required")
    return receivers + [requester_id]


def conversation_type_for(member_ids: list[str]) -> str:
    return "individual" if len(member_ids) == 2 else "group"


async def ensure_users_exist(db: AsyncSession, user_ids: list[str], field: str) -> None:
    count = await count_users_matching(
        db, User.id.in_(user_ids), User.is_verified.is_(True)
    )
    if count != len(set(user_ids)):
        raise NotFoundError(
            "One or more users not found",
            errors=[{"field": field, "message": "One or more users not found"}],
        )


async def resolve_conversation(
    db: AsyncSession,
    receiver_ids: list[str],
    requester_id: str,
    *,
    create: bool = True,
) -> tuple[Conversation | None, bool]:
    """Find the conversation for exactly ``receivers + requester``, or create it.

    Returns ``(conversation, created)``. Creation is only flushed; committing
    is left to the caller's unit of work.
    """
    member_ids = derive_members(receiver_ids, requester_id)
    conversation_type = conversation_type_for(member_ids)

    existing = await find_conversation_by_members(db, set(member_ids), conversation_type)
    if existing is not None or not create:
        return existing, False

    await ensure_users_exist(db, member_ids[:-1], "receivers")
    conversation = await create_conversation(
        db, member_ids, conversation_type, entered_by=requester_id
    )
    logger.info("Created %s conversation %s", conversation_type, conversation.id)
    return conversation, True


async def create_group(
    db: AsyncSession,
    requester_id: str,
    member_ids: list[str],
    conversation_type: str = "group",
    name: str | None = None,
    thumbnail: str | None = None,
) -> Conversation:
    if conversation_type not in GROUP_TYPES:
        raise ValidationError.for_field("type", "type must be 'group' or 'channel'")
    if len(set(member_ids)) != len(member_ids):
        raise ValidationError.for_field("members", "Members array contains duplicates")
    if requester_id in member_ids:
        raise ValidationError.for_field(
            "members", "You cannot create a conversation with yourself"
        )
    await ensure_users_exist(db, member_ids, "members")

    return await create_conversation(
        db,
        member_ids + [requester_id],
        conversation_type,
        entered_by=requester_id,
        name=name,
        thumbnail=thumbnail,
    )


def ensure_mutable_membership(conversation: Conversation) -> None:
    if conversation.type not in GROUP_TYPES:
        raise ForbiddenError("Members of an individual conversation cannot be changed")


async def add_group_members(
    db: AsyncSession, conversation: Conversation, member_ids: list[str]
) -> list[str]:
    ensure_mutable_membership(conversation)
    await ensure_users_exist(db, member_ids, "members")
    return await add_members(db, conversation, member_ids)


async def remove_group_members(
    db: AsyncSession, conversation: Conversation, member_ids: list[str]
) -> tuple[list[str], bool]:
    """Remove members; returns ``(removed, deleted)``.

    A group whose last member is removed is deleted. Channels stay.
    """
    ensure_mutable_membership(conversation)
    current = {m.user_id for m in conversation.members}
    removed = [uid for uid in dict.fromkeys(member_ids) if uid in current]
    if not removed:
        return [], False

    remaining = await remove_members(db, conversation.id, removed)
    if remaining == 0 and conversation.type == "group":
        await delete_conversation(db, conversation.id)
        logger.info("Deleted empty group %s", conversation.id)
        return removed, True
    return removed, False
