from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.database import get_db
from parley.errors import ConflictError, ValidationError
from parley.models.user import User
from parley.schemas.user import ChangePasswordRequest, ProfileUpdate, UserOut
from parley.services.auth import get_current_user, hash_password, verify_password

router = APIRouter(prefix="/api/profile", tags=["profile"])


@router.get("/me", response_model=UserOut)
async def get_me(current_user: User = Depends(get_current_user)):
    return UserOut.model_validate(current_user)


@router.patch("/me", response_model=UserOut)
async def update_me(
    data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if data.username is not None and data.username != current_user.username:
        taken = await db.execute(select(User.id).where(User.username == data.username))
        if taken.scalar_one_or_none():
            raise ConflictError(
                "Username already in use",
                errors=[{"field": "username", "message": "Username already in use"}],
            )
        current_user.username = data.username
    if data.avatar is not None:
        current_user.avatar = data.avatar
    await db.flush()
    await db.refresh(current_user)
    return UserOut.model_validate(current_user)


@router.put("/me/password", response_model=UserOut)
async def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not current_user.password_hash or not verify_password(
        data.current_password, current_user.password_hash
    ):
        raise ValidationError.for_field("current_password", "Current password is incorrect")
    if verify_password(data.new_password, current_user.password_hash):
        raise ValidationError.for_field(
            "new_password", "New password must be different from current password"
        )

    current_user.password_hash = hash_password(data.new_password)
    await db.flush()
    await db.refresh(current_user)
    return UserOut.model_validate(current_user)
