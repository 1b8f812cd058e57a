"""Pydantic schemas for tenant (end-user) auth flows."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class TenantSignup(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    username: Optional[str] = Field(None, min_length=1, max_length=100)
    password: Optional[str] = Field(None, max_length=512)


class TenantSignin(BaseModel):
    identifier: str = Field(..., min_length=1, description="Email or username")
    password: Optional[str] = None


class MagicLinkStart(BaseModel):
    email: EmailStr


class MagicLinkStarted(BaseModel):
    """magic_url is only echoed back for development environments.

    In production the link must travel out-of-band (email), otherwise
    anyone holding the publishable key could sign in as any user.
    """

    magic_url: Optional[str] = None
    expires_at: datetime


class MagicLinkVerify(BaseModel):
    token: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str


class TenantUserRead(BaseModel):
    id: str
    email: str
    name: str
    image_url: str
    username: Optional[str] = None
    email_verified: bool
    created_at: datetime


class TenantSessionRead(BaseModel):
    user: TenantUserRead
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
