import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import EmailStr
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.config import settings
from parley.database import get_db
from parley.errors import ConflictError, NotFoundError, RateLimitError, ValidationError
from parley.models.base import as_utc, utcnow
from parley.models.user import PasswordReset, User, UserVerification
from parley.schemas.user import (
    CompleteRegistrationRequest,
    ForgotPasswordRequest,
    OtpSent,
    OtpVerified,
    RegisterRequest,
    ResendOtpRequest,
    ResetPasswordRequest,
    ResetSent,
    Token,
    UserLogin,
    UserOut,
    VerifyOtpRequest,
)
from parley.services.auth import (
    decode_refresh_token,
    generate_otp,
    generate_token,
    hash_password,
    hash_reset_token,
    issue_access_token,
    issue_refresh_token,
    oauth2_scheme,
    verify_password,
)
from parley.services.email import send_otp_email, send_password_reset_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


async def _get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def _get_verification(db: AsyncSession, **criteria) -> UserVerification | None:
    result = await db.execute(select(UserVerification).filter_by(**criteria))
    return result.scalar_one_or_none()


def _check_cooldown(sent_at: datetime, what: str = "OTP") -> None:
    elapsed = (utcnow() - as_utc(sent_at)).total_seconds()
    remaining = settings.otp_cooldown_seconds - int(elapsed)
    if remaining > 0:
        raise RateLimitError(f"Please wait {remaining} seconds before requesting a new {what}")


def _token_response(user: User) -> Token:
    access_token, access_expires = issue_access_token(user.id)
    refresh_token, refresh_expires = issue_refresh_token(user.id)
    return Token(
        access_token=access_token,
        access_expires=access_expires,
        refresh_token=refresh_token,
        refresh_expires=refresh_expires,
        user=UserOut.model_validate(user),
    )


async def _issue_otp(verification: UserVerification, db: AsyncSession) -> OtpSent:
    now = utcnow()
    verification.otp = generate_otp()
    verification.sent_at = now
    verification.expired_at = now + timedelta(minutes=settings.otp_expire_minutes)
    verification.verified_at = None
    await db.flush()

    await send_otp_email(verification.email, verification.otp, verification.expired_at)
    return OtpSent(
        otp_token=verification.token,
        otp_expires=verification.expired_at,
        otp_request_cooldown=settings.otp_cooldown_seconds,
    )


@router.post("/register", response_model=OtpSent, status_code=status.HTTP_201_CREATED)
async def register(data: RegisterRequest, db: AsyncSession = Depends(get_db)):
    email = data.email.lower()
    user = await _get_user_by_email(db, email)
    if user and user.is_verified:
        raise ConflictError(
            "Email already in use",
            errors=[{"field": "email", "message": "Email already in use"}],
        )
    if not user:
        db.add(User(email=email))

    verification = await _get_verification(db, email=email)
    if verification:
        _check_cooldown(verification.sent_at)
    else:
        verification = UserVerification(email=email, otp="", sent_at=utcnow(), expired_at=utcnow())
        db.add(verification)
    # a fresh registration always starts a fresh token
    verification.token = generate_token()

    return await _issue_otp(verification, db)


@router.post("/register/resend-otp", response_model=OtpSent)
async def resend_otp(
    data: ResendOtpRequest,
    x_otp_token: str = Header(),
    db: AsyncSession = Depends(get_db),
):
    verification = await _get_verification(db, email=data.email.lower(), token=x_otp_token)
    if not verification or verification.verified_at is not None:
        raise ValidationError.for_field("otp_token", "Invalid OTP token")
    _check_cooldown(verification.sent_at)
    return await _issue_otp(verification, db)


@router.post("/register/verify", response_model=OtpVerified)
async def verify_otp(
    data: VerifyOtpRequest,
    x_otp_token: str = Header(),
    db: AsyncSession = Depends(get_db),
):
    verification = await _get_verification(db, email=data.email.lower(), token=x_otp_token)
    if not verification or verification.verified_at is not None:
        raise ValidationError.for_field("otp_token", "Invalid OTP token")
    if as_utc(verification.expired_at) < utcnow():
        raise ValidationError.for_field("otp", "OTP has expired")
    if verification.otp != data.otp:
        raise ValidationError.for_field("otp", "Invalid OTP")

    now = utcnow()
    verification.verified_at = now
    verification.token = generate_token()
    verification.expired_at = now + timedelta(minutes=settings.info_token_expire_minutes)
    await db.flush()
    return OtpVerified(info_token=verification.token, info_expires=verification.expired_at)


@router.post("/register/complete", response_model=Token)
async def complete_registration(
    data: CompleteRegistrationRequest,
    x_info_token: str = Header(),
    db: AsyncSession = Depends(get_db),
):
    verification = await _get_verification(db, token=x_info_token)
    if (
        not verification
        or verification.verified_at is None
        or as_utc(verification.expired_at) < utcnow()
    ):
        raise ValidationError.for_field("info_token", "Invalid or expired info token")

    taken = await db.execute(select(User.id).where(User.username == data.username))
    if taken.scalar_one_or_none():
        raise ConflictError(
            "Username already in use",
            errors=[{"field": "username", "message": "Username already in use"}],
        )

    user = await _get_user_by_email(db, verification.email)
    if not user:
        user = User(email=verification.email)
        db.add(user)
    user.username = data.username
    user.password_hash = hash_password(data.password)
    user.is_verified = True
    await db.execute(delete(UserVerification).where(UserVerification.id == verification.id))
    await db.flush()
    await db.refresh(user)
    logger.info("Registration completed for user %s", user.id)

    return _token_response(user)


@router.get("/user-exists")
async def user_exists(
    email: EmailStr | None = None,
    username: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    if not email and not username:
        raise ValidationError("Email or username is required")

    query = select(User.id).where(User.is_verified.is_(True))
    if email:
        query = query.where(User.email == email.lower())
    if username:
        query = query.where(User.username == username)
    result = await db.execute(query.limit(1))
    return {"exists": result.scalar_one_or_none() is not None}


@router.post("/login", response_model=Token)
async def login(data: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await _get_user_by_email(db, data.email.lower())
    if (
        not user
        or not user.is_verified
        or not user.password_hash
        or not verify_password(data.password, user.password_hash)
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    return _token_response(user)


@router.post("/refresh-token", response_model=Token)
async def refresh_token(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
):
    user_id = decode_refresh_token(token)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_verified:
        raise NotFoundError("User not found, invalid refresh token")
    return _token_response(user)


@router.post("/forgot-password", response_model=ResetSent)
async def forgot_password(data: ForgotPasswordRequest, db: AsyncSession = Depends(get_db)):
    email = data.email.lower()
    user = await _get_user_by_email(db, email)
    if not user or not user.is_verified:
        raise NotFoundError(
            "User not found, please register",
            errors=[{"field": "email", "message": "User not found, please register"}],
        )

    result = await db.execute(select(PasswordReset).where(PasswordReset.email == email))
    reset = result.scalar_one_or_none()
    if reset:
        _check_cooldown(reset.sent_at, "password reset")
    else:
        reset = PasswordReset(email=email)
        db.add(reset)

    # only the hash is stored; the plain token goes to the user
    token = generate_token()
    now = utcnow()
    reset.token_hash = hash_reset_token(token)
    reset.otp = generate_otp() if data.method == "otp" else None
    reset.sent_at = now
    reset.expired_at = now + timedelta(minutes=settings.reset_token_expire_minutes)
    await db.flush()

    sent = ResetSent(reset_expires=reset.expired_at, request_cooldown=settings.otp_cooldown_seconds)
    if data.method == "otp":
        await send_password_reset_email(email, reset.expired_at, otp=reset.otp)
        sent.reset_token = token
    else:
        link = f"{settings.reset_url}?token={token}"
        await send_password_reset_email(email, reset.expired_at, link=link)
    logger.info("Password reset (%s) requested for user %s", data.method, user.id)
    return sent


@router.post("/reset-password", status_code=status.HTTP_204_NO_CONTENT)
async def reset_password(
    data: ResetPasswordRequest,
    x_reset_token: str = Header(),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(PasswordReset).where(PasswordReset.token_hash == hash_reset_token(x_reset_token))
    )
    reset = result.scalar_one_or_none()
    if not reset or as_utc(reset.expired_at) < utcnow():
        raise ValidationError.for_field(
            "reset_token", "Invalid or expired password reset token"
        )
    if reset.otp is not None and data.otp != reset.otp:
        raise ValidationError.for_field("otp", "Invalid OTP, please try again")

    user = await _get_user_by_email(db, reset.email)
    if not user or not user.is_verified:
        raise ValidationError.for_field(
            "reset_token", "Invalid or expired password reset token"
        )
    user.password_hash = hash_password(data.new_password)
    await db.execute(delete(PasswordReset).where(PasswordReset.id == reset.id))
    await db.flush()
    logger.info("Password reset completed for user %s", user.id)
