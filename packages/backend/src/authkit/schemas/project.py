"""Pydantic schemas for projects, environments, and settings.

Learn: EnvironmentRead never includes the secret (hashed or not).
The plaintext secret only appears in EnvironmentWithSecret, which is
returned by exactly two endpoints: environment creation and rotation.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


# ─── Settings ───────────────────────────────────────────

class SettingsRead(BaseModel):
    enable_username: bool
    enable_passwordless: bool
    email_verification_required: bool
    password_min_length: int
    password_max_length: int
    password_require_uppercase: bool
    password_require_lowercase: bool
    password_require_numbers: bool
    password_require_special: bool
    updated_at: datetime

    model_config = {"from_attributes": True}


class SettingsUpdate(BaseModel):
    """Partial update: omitted fields keep their current value."""

    enable_username: Optional[bool] = None
    enable_passwordless: Optional[bool] = None
    email_verification_required: Optional[bool] = None
    password_min_length: Optional[int] = Field(None, ge=4, le=128)
    password_max_length: Optional[int] = Field(None, ge=8, le=128)
    password_require_uppercase: Optional[bool] = None
    password_require_lowercase: Optional[bool] = None
    password_require_numbers: Optional[bool] = None
    password_require_special: Optional[bool] = None

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_length_bounds(self):
        if (
            self.password_min_length is not None
            and self.password_max_length is not None
            and self.password_min_length > self.password_max_length
        ):
            raise ValueError("password_min_length cannot exceed password_max_length")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True)


# ─── Environments ───────────────────────────────────────

class EnvironmentCreate(BaseModel):
    type: Literal["development", "production"] = "production"


class EnvironmentRead(BaseModel):
    id: str
    project_id: str
    type: str
    publishable_key: str
    created_at: datetime

    model_config = {"from_attributes": True}


class EnvironmentWithSecret(EnvironmentRead):
    """Returned once, at creation or rotation. The secret is not stored."""

    secret_key: str


# ─── Projects ───────────────────────────────────────────

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class ProjectRead(BaseModel):
    id: str
    name: str
    slug: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ProjectDetail(ProjectRead):
    """Project with nested environments and settings."""
    environments: list[EnvironmentRead] = []
    settings: Optional[SettingsRead] = None


class ProjectCreated(BaseModel):
    project: ProjectDetail
    environment: EnvironmentWithSecret
