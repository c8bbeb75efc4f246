from typing import Literal

from pydantic import BaseModel, EmailStr, Field


class SignUpIn(BaseModel):
    # syntax is checked by the route so every field error is reported at once
    name: str | None = None
    email: str | None = None
    password: str | None = None
    confirmPassword: str | None = None
    terms: bool | None = None


class SignInIn(BaseModel):
    email: EmailStr
    password: str = Field(max_length=1024)
    rememberMe: bool = False


class OtpSendIn(BaseModel):
    email: EmailStr
    type: Literal["forget-password", "email-verification"] = "forget-password"


class OtpResetPasswordIn(BaseModel):
    email: EmailStr
    otp: str = Field(max_length=32)
    password: str = Field(max_length=1024)


class OtpVerifyEmailIn(BaseModel):
    email: EmailStr
    otp: str = Field(max_length=32)


class UserPublic(BaseModel):
    id: str
    email: EmailStr
    name: str | None = None
    emailVerified: bool


class AuthEnvelope(BaseModel):
    data: UserPublic


class SessionEnvelope(BaseModel):
    data: UserPublic | None = None


class MessageOut(BaseModel):
    message: str
