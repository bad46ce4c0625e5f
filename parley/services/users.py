from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.models.base import is_object_id
from parley.models.conversation import Conversation
from parley.models.user import User


async def find_users_by_ids(
    db: AsyncSession, ids: Iterable[str], verified_only: bool = False
) -> list[User]:
    ids = list(dict.fromkeys(ids))
    if not ids:
        return []
    query = select(User).where(User.id.in_(ids))
    if verified_only:
        query = query.where(User.is_verified.is_(True))
    result = await db.execute(query)
    users = {user.id: user for user in result.scalars().all()}
    return [users[uid] for uid in ids if uid in users]


async def count_users_matching(db: AsyncSession, *criteria) -> int:
    result = await db.execute(select(func.count(User.id)).where(*criteria))
    return result.scalar_one()


async def get_user_by_identifier(db: AsyncSession, identifier: str) -> User | None:
    """Look a user up by ObjectId, falling back to the username."""
    if is_object_id(identifier):
        result = await db.execute(select(User).where(User.id == identifier.lower()))
        user = result.scalar_one_or_none()
        if user:
            return user
    result = await db.execute(select(User).where(User.username == identifier))
    return result.scalar_one_or_none()


def is_member(conversation: Conversation, user_id: str) -> bool:
    return any(m.user_id == user_id for m in conversation.members)
