"""Per-member "last entered" tracking and unread derivation."""
from datetime import datetime

from fastapi import Depends
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.database import get_db, transaction
from parley.models.base import as_utc, utcnow
from parley.models.conversation import ConversationMember
from parley.models.message import Message
from parley.services.notifier import Notifier, get_notifier
from parley.services.store import get_member_conversation, set_last_entered


def is_unread(
    created_at: datetime,
    sender_id: str,
    viewer_id: str,
    last_entered_at: datetime | None,
) -> bool:
    if sender_id == viewer_id:
        return False
    if last_entered_at is None:
        return True
    return as_utc(created_at) > as_utc(last_entered_at)


async def unread_counts(
    db: AsyncSession, user_id: str, conversation_ids: list[str]
) -> dict[str, int]:
    """Count unread messages of *user_id* for several conversations in one query."""
    if not conversation_ids:
        return {}

    result = await db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .join(
            ConversationMember,
            and_(
                ConversationMember.conversation_id == Message.conversation_id,
                ConversationMember.user_id == user_id,
            ),
        )
        .where(
            Message.conversation_id.in_(conversation_ids),
            Message.sender_id != user_id,
            Message.deleted_at.is_(None),
            or_(
                ConversationMember.last_entered_at.is_(None),
                Message.created_at > ConversationMember.last_entered_at,
            ),
        )
        .group_by(Message.conversation_id)
    )
    counts = {cid: 0 for cid in conversation_ids}
    counts.update({cid: count for cid, count in result.all()})
    return counts


class SeenTracker:
    def __init__(self, db: AsyncSession, notifier: Notifier):
        self.db = db
        self.notifier = notifier

    async def mark_entered(self, conversation_id: str, user_id: str) -> datetime:
        async with transaction(self.db):
            await get_member_conversation(self.db, conversation_id, user_id)
            seen_at = utcnow()
            await set_last_entered(self.db, conversation_id, user_id, seen_at)

        await self.notifier.notify_seen(conversation_id, user_id, seen_at)
        return seen_at

    async def unread_count(self, conversation_id: str, user_id: str) -> int:
        await get_member_conversation(self.db, conversation_id, user_id)
        counts = await unread_counts(self.db, user_id, [conversation_id])
        return counts[conversation_id]


def get_seen_tracker(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> SeenTracker:
    return SeenTracker(db, notifier)
