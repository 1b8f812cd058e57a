"""Tenant auth service — signup, signin, magic links, token refresh.

Learn: Everything here runs inside an EnvironmentContext produced by a
guard, so every query is scoped to ctx.project_id. Emails are NOT
globally unique: the same address may belong to different users in
different projects. That's why users are always resolved through
ProjectUserLink, never with a bare `WHERE users.email = ?`.

State machines:
- signup:       validate → insert user + link (one commit) → tokens
- signin:       resolve link → check password → tokens
- magic start:  resolve link → insert magic link → hand URL to sender
- magic verify: find link → not expired → claim (compare-and-set on
                consumed_at) → mark user verified → tokens

Uniqueness races (same username or email twice, same link verified
twice) are settled by the database: a unique index or a conditional UPDATE.
Read-checks beforehand only produce nicer error messages.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from authkit.auth.guards import EnvironmentContext
from authkit.auth.ids import generate_id, generate_magic_token
from authkit.auth.jwt import ACCESS, REFRESH, TokenPair, TokenService, utcnow
from authkit.auth.password import CredentialHasher
from authkit.auth.policy import (
    is_email_identifier,
    normalize_email,
    validate_password,
)
from authkit.db.models import MagicLink, ProjectUserLink, User
from authkit.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    TokenError,
    UnauthenticatedError,
)
from authkit.events.store import EventStore
from authkit.events.types import (
    MAGIC_LINK_CONSUMED,
    MAGIC_LINK_ISSUED,
    TENANT_USER_SIGNED_UP,
)
from authkit.services.collaborators import (
    LogMagicLinkSender,
    MagicLinkSender,
    avatar_url,
)

logger = structlog.get_logger()

TENANT_ROLE = "member"


def _conflict_from(exc: IntegrityError) -> ConflictError:
    """Name the unique index a losing concurrent insert ran into."""
    if "member_email" in str(exc.orig):
        return ConflictError("User already exists")
    return ConflictError("Username already exists")


@dataclass(frozen=True)
class TenantUser:
    """A user as seen from one project: the user row plus its link."""

    user: User
    link: ProjectUserLink

    @property
    def username(self) -> Optional[str]:
        return self.link.project_username


@dataclass(frozen=True)
class TenantSession:
    member: TenantUser
    tokens: TokenPair


@dataclass(frozen=True)
class IssuedMagicLink:
    url: str
    expires_at: datetime


class TenantAuthService:
    """Identity flows for end-users of one project environment."""

    def __init__(
        self,
        db: AsyncSession,
        ctx: EnvironmentContext,
        hasher: CredentialHasher,
        tokens: TokenService,
        *,
        avatar_template: str,
        app_base_url: str,
        magic_link_ttl: timedelta = timedelta(minutes=15),
        sender: Optional[MagicLinkSender] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ctx = ctx
        self.hasher = hasher
        self.tokens = tokens
        self.avatar_template = avatar_template
        self.app_base_url = app_base_url.rstrip("/")
        self.magic_link_ttl = magic_link_ttl
        self.sender = sender or LogMagicLinkSender()
        self.clock = clock
        self.events = EventStore(db)

    @property
    def settings(self):
        return self.ctx.settings

    # ─── Project-scoped lookups ─────────────────────────

    def _members(self):
        return (
            select(ProjectUserLink)
            .join(User, ProjectUserLink.user_id == User.id)
            .options(contains_eager(ProjectUserLink.user))
            .where(
                ProjectUserLink.project_id == self.ctx.project_id,
                ProjectUserLink.role == TENANT_ROLE,
            )
        )

    async def _first_member(self, *criteria) -> Optional[TenantUser]:
        result = await self.db.execute(
            self._members().where(*criteria).order_by(ProjectUserLink.created_at)
        )
        link = result.scalars().first()
        return TenantUser(user=link.user, link=link) if link else None

    async def find_by_email(self, email: str) -> Optional[TenantUser]:
        return await self._first_member(User.email == email)

    async def find_by_username(self, username: str) -> Optional[TenantUser]:
        return await self._first_member(ProjectUserLink.project_username == username)

    async def find_by_user_id(self, user_id: str) -> Optional[TenantUser]:
        return await self._first_member(ProjectUserLink.user_id == user_id)

    def _session(self, member: TenantUser) -> TenantSession:
        return TenantSession(
            member=member,
            tokens=self.tokens.issue_tenant_pair(member.user.id, self.ctx.project_id),
        )

    # ─── Signup ─────────────────────────────────────────

    async def signup(
        self,
        email: str,
        name: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> TenantSession:
        if self.settings.enable_username and not username:
            raise BadRequestError("Username is required")
        if not self.settings.enable_passwordless and not password:
            raise BadRequestError("Password is required")

        password_hash = None
        if password:
            violation = validate_password(password, self.settings)
            if violation:
                raise BadRequestError(violation)
            password_hash = self.hasher.hash(password)

        if username and await self.find_by_username(username):
            raise ConflictError("Username already exists")
        if await self.find_by_email(email):
            raise ConflictError("User already exists")

        user_id = generate_id("user")
        user = User(
            id=user_id,
            email=email,
            name=name,
            image_url=avatar_url(self.avatar_template, user_id),
            username=username,
            password_hash=password_hash,
            email_verified=not self.settings.email_verification_required,
            role=TENANT_ROLE,
        )
        link = ProjectUserLink(
            id=generate_id("link"),
            project_id=self.ctx.project_id,
            user_id=user_id,
            project_username=username,
            member_email=email,
            role=TENANT_ROLE,
        )
        try:
            self.db.add(user)
            await self.db.flush()
            self.db.add(link)
            await self.db.flush()
            await self.events.append(
                stream_id=f"user:{user_id}",
                event_type=TENANT_USER_SIGNED_UP,
                data={
                    "project_id": self.ctx.project_id,
                    "environment_id": self.ctx.environment_id,
                    "has_password": password_hash is not None,
                },
            )
            await self.db.commit()
        except IntegrityError as e:
            # A concurrent signup took the username or the email.
            await self.db.rollback()
            raise _conflict_from(e) from None

        logger.info("tenant.signup", project_id=self.ctx.project_id, user_id=user_id)
        return self._session(TenantUser(user=user, link=link))

    # ─── Signin ─────────────────────────────────────────

    async def signin(
        self, identifier: str, password: Optional[str] = None
    ) -> TenantSession:
        if self.settings.enable_passwordless and not password:
            raise BadRequestError("Please use magic link to sign in")

        member = None
        if is_email_identifier(identifier):
            email = normalize_email(identifier)
            if email:
                member = await self.find_by_email(email)
        else:
            member = await self.find_by_username(identifier)

        if not member or not member.user.password_hash or not password:
            raise UnauthenticatedError("Invalid credentials")
        if not self.hasher.verify(password, member.user.password_hash):
            logger.info(
                "tenant.signin_failed",
                project_id=self.ctx.project_id,
                user_id=member.user.id,
            )
            raise UnauthenticatedError("Invalid credentials")

        logger.info(
            "tenant.signin", project_id=self.ctx.project_id, user_id=member.user.id
        )
        return self._session(member)

    # ─── Magic links ────────────────────────────────────

    async def start_magic_link(self, email: str) -> IssuedMagicLink:
        """Persist a 15-minute single-use link and hand it to the sender.

        Delivery happens after the commit. A sender failure is logged
        and the link stays valid; the caller can ask for another one.
        """
        if not self.settings.enable_passwordless:
            raise BadRequestError("Passwordless sign in is not enabled")

        member = await self.find_by_email(email)
        if not member:
            raise NotFoundError("User not found")

        token = generate_magic_token()
        expires_at = self.clock() + self.magic_link_ttl
        magic_link = MagicLink(
            id=generate_id("magic"),
            project_id=self.ctx.project_id,
            environment_id=self.ctx.environment_id,
            user_id=member.user.id,
            email=email,
            token=token,
            expires_at=expires_at,
        )
        self.db.add(magic_link)
        await self.db.flush()
        await self.events.append(
            stream_id=f"user:{member.user.id}",
            event_type=MAGIC_LINK_ISSUED,
            data={
                "project_id": self.ctx.project_id,
                "environment_id": self.ctx.environment_id,
                "magic_link_id": magic_link.id,
            },
        )
        await self.db.commit()

        url = f"{self.app_base_url}/auth/verify?token={token}"
        try:
            await self.sender.send(email=email, url=url, project_id=self.ctx.project_id)
        except Exception as e:
            logger.warning(
                "magic_link.delivery_failed",
                project_id=self.ctx.project_id,
                magic_link_id=magic_link.id,
                error=str(e),
            )

        return IssuedMagicLink(url=url, expires_at=expires_at)

    async def verify_magic_link(self, token: str) -> TenantSession:
        result = await self.db.execute(
            select(MagicLink).where(
                MagicLink.token == token,
                MagicLink.project_id == self.ctx.project_id,
                MagicLink.environment_id == self.ctx.environment_id,
            )
        )
        magic_link = result.scalars().first()
        if not magic_link:
            raise BadRequestError("Invalid or expired magic link")

        now = self.clock()
        if now > magic_link.expires_at:
            raise BadRequestError("Magic link has expired")
        if magic_link.consumed_at is not None:
            raise BadRequestError("Magic link has already been used")

        # Compare-and-set: only one verifier can move consumed_at off NULL.
        claimed = await self.db.execute(
            update(MagicLink)
            .where(MagicLink.id == magic_link.id, MagicLink.consumed_at.is_(None))
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.db.rollback()
            raise BadRequestError("Magic link has already been used")

        member = None
        if magic_link.user_id:
            member = await self.find_by_user_id(magic_link.user_id)
        if member is None:
            member = await self.find_by_email(magic_link.email)
        if member is None:
            member = await self._register_from_magic_link(magic_link.email)

        member.user.email_verified = True
        await self.events.append(
            stream_id=f"user:{member.user.id}",
            event_type=MAGIC_LINK_CONSUMED,
            data={
                "project_id": self.ctx.project_id,
                "environment_id": self.ctx.environment_id,
                "magic_link_id": magic_link.id,
            },
        )
        await self.db.commit()

        logger.info(
            "tenant.magic_link_verified",
            project_id=self.ctx.project_id,
            user_id=member.user.id,
        )
        return self._session(member)

    async def _register_from_magic_link(self, email: str) -> TenantUser:
        """First use of a link with no account behind it. The caller commits."""
        user_id = generate_id("user")
        user = User(
            id=user_id,
            email=email,
            name=email.split("@")[0],
            image_url=avatar_url(self.avatar_template, user_id),
            email_verified=True,
            role=TENANT_ROLE,
        )
        link = ProjectUserLink(
            id=generate_id("link"),
            project_id=self.ctx.project_id,
            user_id=user_id,
            member_email=email,
            role=TENANT_ROLE,
        )
        try:
            self.db.add(user)
            await self.db.flush()
            self.db.add(link)
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise _conflict_from(e) from None
        return TenantUser(user=user, link=link)

    # ─── Tokens ─────────────────────────────────────────

    async def _member_from_token(self, token: str, audience: str) -> TenantUser:
        try:
            payload = self.tokens.verify(token, audience=audience)
        except TokenError:
            raise UnauthenticatedError("Invalid credentials") from None
        if payload.project_id != self.ctx.project_id:
            raise UnauthenticatedError("Invalid credentials")

        member = await self.find_by_user_id(payload.user_id)
        if not member:
            raise UnauthenticatedError("Invalid credentials")
        return member

    async def refresh(self, refresh_token: str) -> TenantSession:
        """Exchange a refresh token for a fresh access + refresh pair."""
        member = await self._member_from_token(refresh_token, REFRESH)
        return self._session(member)

    async def current_user(self, access_token: str) -> TenantUser:
        return await self._member_from_token(access_token, ACCESS)

    # ─── Server-side user management (strict guard) ─────

    async def list_users(self, limit: int = 50, offset: int = 0) -> list[TenantUser]:
        result = await self.db.execute(
            self._members()
            .order_by(ProjectUserLink.created_at, ProjectUserLink.id)
            .limit(limit)
            .offset(offset)
        )
        return [TenantUser(user=link.user, link=link) for link in result.scalars().all()]

    async def get_user(self, user_id: str) -> TenantUser:
        member = await self.find_by_user_id(user_id)
        if not member:
            raise NotFoundError("User not found")
        return member
