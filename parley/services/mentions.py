"""#mention parsing for message content."""
import re

from sqlalchemy.ext.asyncio import AsyncSession

from parley.models.base import is_object_id
from parley.models.user import User
from parley.services.users import find_users_by_ids

# A mention is '#' followed by a word; only 24-hex words are user ids
MENTION_PATTERN = re.compile(r"#(\w+)", re.UNICODE)


def extract_mentions(content: str) -> list[str]:
    """Return the user ids mentioned in *content*, in order, without duplicates.

    Tokens that are not valid ids (``#hello``, ``#123``) are skipped.
    """
    mentions = []
    for match in MENTION_PATTERN.finditer(content):
        token = match.group(1)
        if is_object_id(token) and token.lower() not in mentions:
            mentions.append(token.lower())
    return mentions


async def resolve_mentions(db: AsyncSession, mention_ids: list[str]) -> list[User]:
    """Keep only mentions that belong to an existing, verified user."""
    if not mention_ids:
        return []
    return await find_users_by_ids(db, mention_ids, verified_only=True)
