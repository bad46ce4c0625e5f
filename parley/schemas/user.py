from datetime import datetime

from typing import Literal

from pydantic import BaseModel, EmailStr, Field


class UserBrief(BaseModel):
    """Display projection embedded in conversations and messages."""

    id: str
    username: str | None = None
    email: str
    avatar: str | None = None

    model_config = {"from_attributes": True}


class UserOut(BaseModel):
    id: str
    username: str | None = None
    email: str
    avatar: str | None = None
    is_verified: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProfileUpdate(BaseModel):
    username: str | None = Field(default=None, min_length=3, max_length=50)
    avatar: str | None = Field(default=None, max_length=512)

    model_config = {"extra": "forbid"}


class RegisterRequest(BaseModel):
    email: EmailStr


class ResendOtpRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=6, max_length=6)


class CompleteRegistrationRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=8)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class OtpSent(BaseModel):
    otp_token: str
    otp_expires: datetime
    otp_request_cooldown: int  # seconds


class OtpVerified(BaseModel):
    info_token: str
    info_expires: datetime


class Token(BaseModel):
    access_token: str
    access_expires: datetime
    refresh_token: str
    refresh_expires: datetime
    token_type: str = "bearer"
    user: UserOut


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    method: Literal["otp", "link"] = "otp"


class ResetSent(BaseModel):
    # reset_token is only handed out for the "otp" method; links carry it by mail
    reset_token: str | None = None
    reset_expires: datetime
    request_cooldown: int  # seconds


class ResetPasswordRequest(BaseModel):
    new_password: str = Field(min_length=8)
    otp: str | None = Field(default=None, min_length=6, max_length=6)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)
