import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.config import settings
from parley.database import get_db
from parley.models.base import is_object_id
from parley.models.user import User

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def generate_otp() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


def generate_token() -> str:
    return secrets.token_hex(20)


def _encode(user_id: str, token_type: str, secret: str, minutes: int) -> tuple[str, datetime]:
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {"sub": user_id, "type": token_type, "exp": expire}
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm), expire


def _decode(token: str, token_type: str, secret: str) -> str | None:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    user_id = payload.get("sub")
    if not is_object_id(user_id):
        return None
    return user_id


def create_access_token(user_id: str) -> str:
    return issue_access_token(user_id)[0]


def issue_access_token(user_id: str) -> tuple[str, datetime]:
    return _encode(user_id, "access", settings.jwt_secret, settings.jwt_expire_minutes)


def issue_refresh_token(user_id: str) -> tuple[str, datetime]:
    return _encode(
        user_id, "refresh", settings.jwt_refresh_secret, settings.jwt_refresh_expire_minutes
    )


def decode_access_token(token: str) -> str | None:
    """Return the user id carried by *token*, or None if it is not valid."""
    return _decode(token, "access", settings.jwt_secret)


def decode_refresh_token(token: str) -> str | None:
    return _decode(token, "refresh", settings.jwt_refresh_secret)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user_id = decode_access_token(token)
    if user_id is None:
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_verified:
        raise credentials_exception
    return user
