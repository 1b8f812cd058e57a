"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.

Key concepts:
- String primary keys from authkit.auth.ids ("user_…", "project_…")
- JSON columns that become JSONB on PostgreSQL
- Uniqueness lives in the database, not in read-then-insert checks:
  a race between two signups is settled by the index, not by luck
- ON DELETE CASCADE from projects to everything scoped under them
"""

from datetime import datetime, timezone
from functools import partial
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from authkit.auth.ids import generate_id

JSONType = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops tzinfo on the way out; PostgreSQL keeps it. Normalising
    here means expiry comparisons never mix naive and aware values.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _id(category: str):
    return partial(generate_id, category)


def _created_at() -> Mapped[datetime]:
    return mapped_column(UTCDateTime, default=utcnow, server_default=func.now())


# ══════════════════════════════════════════════════════════════
# Identity
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A human identity: platform operator or tenant end-user.

    Learn: Email is NOT unique here. The same address can sign up to
    many projects, and each signup is a separate user row. Tenant
    lookups always go through ProjectUserLink; platform lookups are
    restricted to role="owner".
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_email", "email"),
        Index(
            "uq_platform_user_email",
            "email",
            unique=True,
            postgresql_where=text("role = 'owner'"),
            sqlite_where=text("role = 'owner'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_id("user"))
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # nullable for passwordless users
    email_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="member"
    )  # owner (platform), member (tenant)
    user_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )  # Python attr is user_metadata; "metadata" is reserved by SQLAlchemy
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    project_links: Mapped[list["ProjectUserLink"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


# ══════════════════════════════════════════════════════════════
# Projects
# ══════════════════════════════════════════════════════════════


class Project(Base):
    """Root of a tenant's isolated namespace."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=_id("project")
    )
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = _created_at()

    environments: Mapped[list["ProjectEnvironment"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProjectEnvironment.created_at",
    )
    settings: Mapped[Optional["ProjectSettings"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )
    user_links: Mapped[list["ProjectUserLink"]] = relationship(
        back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )


class ProjectUserLink(Base):
    """Membership of a user in a project.

    Learn: project_username is unique per project only when present.
    The index is partial, so any number of links may leave it NULL.
    member_email copies the user's email onto member links so the store
    can hold "one member per email per project"; owner links leave it NULL.
    """

    __tablename__ = "project_user_links"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_user"),
        Index(
            "uq_project_username",
            "project_id",
            "project_username",
            unique=True,
            postgresql_where=text("project_username IS NOT NULL"),
            sqlite_where=text("project_username IS NOT NULL"),
        ),
        Index(
            "uq_project_member_email",
            "project_id",
            "member_email",
            unique=True,
            postgresql_where=text("member_email IS NOT NULL"),
            sqlite_where=text("member_email IS NOT NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_id("link"))
    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    project_username: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    member_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="member"
    )  # owner, member
    created_at: Mapped[datetime] = _created_at()

    project: Mapped["Project"] = relationship(back_populates="user_links")
    user: Mapped["User"] = relationship(back_populates="project_links")


class ProjectEnvironment(Base):
    """A project's credential scope: development or production."""

    __tablename__ = "project_environments"
    __table_args__ = (
        UniqueConstraint("project_id", "type", name="uq_project_env_type"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_id("env"))
    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # development, production
    publishable_key: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False
    )
    secret_key_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = _created_at()

    project: Mapped["Project"] = relationship(back_populates="environments")


class ProjectSettings(Base):
    """Feature flags and password policy. One row per project."""

    __tablename__ = "project_settings"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=_id("settings")
    )
    project_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("projects.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    # Feature flags
    enable_username: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enable_passwordless: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    email_verification_required: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Password policy
    password_min_length: Mapped[int] = mapped_column(Integer, nullable=False, default=8)
    password_max_length: Mapped[int] = mapped_column(
        Integer, nullable=False, default=128
    )
    password_require_uppercase: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    password_require_lowercase: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    password_require_numbers: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    password_require_special: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    settings_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    project: Mapped["Project"] = relationship(back_populates="settings")


class MagicLink(Base):
    """Single-use passwordless sign-in token.

    Learn: consumed_at goes from NULL to a timestamp exactly once.
    The transition is a compare-and-set UPDATE (… WHERE consumed_at IS
    NULL), so two concurrent verifies can never both win.
    """

    __tablename__ = "magic_links"
    __table_args__ = (
        Index("idx_magic_links_token", "token"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_id("magic"))
    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    environment_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("project_environments.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = _created_at()


# ══════════════════════════════════════════════════════════════
# Audit log
# ══════════════════════════════════════════════════════════════


class Event(Base):
    """Immutable audit log of auth state transitions.

    stream_id examples: "project:project_abc", "user:user_xyz", "env:env_123"
    type examples: "project.created", "environment.secret_rotated"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = _created_at()
