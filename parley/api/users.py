from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.config import settings
from parley.database import get_db
from parley.errors import NotFoundError
from parley.models.user import User
from parley.schemas.common import Page
from parley.schemas.user import UserOut
from parley.services.auth import get_current_user
from parley.services.pagination import pagination
from parley.services.users import count_users_matching, get_user_by_identifier

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/", response_model=Page[UserOut])
async def list_users(
    q: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    window = pagination(page, limit)
    criteria = [User.is_verified.is_(True)]
    if q:
        criteria.append(User.username.ilike(f"%{q}%") | User.email.ilike(f"%{q}%"))

    total = await count_users_matching(db, *criteria)
    result = await db.execute(
        select(User)
        .where(*criteria)
        .order_by(User.username, User.id)
        .offset(window.skip)
        .limit(window.limit)
    )
    users = result.scalars().all()
    return window.paginate_result(total, [UserOut.model_validate(u) for u in users])


@router.get("/{identifier}", response_model=UserOut)
async def get_user(
    identifier: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user = await get_user_by_identifier(db, identifier)
    if not user or not user.is_verified:
        raise NotFoundError("User not found")
    return UserOut.model_validate(user)
