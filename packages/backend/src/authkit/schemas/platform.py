"""Pydantic schemas for platform (dashboard) auth."""

from pydantic import BaseModel, EmailStr, Field


class PlatformSignup(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)


class PlatformSignin(BaseModel):
    email: EmailStr
    password: str


class PlatformUserRead(BaseModel):
    id: str
    email: str
    name: str
    image_url: str
    role: str

    model_config = {"from_attributes": True}


class PlatformSessionRead(BaseModel):
    user: PlatformUserRead
