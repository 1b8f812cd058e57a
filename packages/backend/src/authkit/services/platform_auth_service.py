"""Platform auth service — operator signup/signin for the dashboard.

Learn: Platform users are the people who own projects. They are
stored in the same users table as tenant end-users but always with
role="owner", and every lookup here filters on that role. Without the
filter, a tenant who signed up to some project with alice@example.com
could collide with (or sign in as) the platform operator with the
same address.
"""

from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from authkit.auth.ids import generate_id
from authkit.auth.jwt import PLATFORM, TokenService
from authkit.auth.password import CredentialHasher
from authkit.db.models import User
from authkit.errors import ConflictError, TokenError, UnauthenticatedError
from authkit.events.store import EventStore
from authkit.events.types import PLATFORM_USER_SIGNED_UP
from authkit.services.collaborators import avatar_url

logger = structlog.get_logger()

PLATFORM_ROLE = "owner"


class PlatformAuthService:
    """Signup, signin, and session probing for platform operators."""

    def __init__(
        self,
        db: AsyncSession,
        hasher: CredentialHasher,
        tokens: TokenService,
        avatar_template: str,
    ):
        self.db = db
        self.hasher = hasher
        self.tokens = tokens
        self.avatar_template = avatar_template
        self.events = EventStore(db)

    async def _find_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == email, User.role == PLATFORM_ROLE)
        )
        return result.scalars().first()

    async def signup(self, email: str, name: str, password: str) -> tuple[User, str]:
        """Create a platform user. Returns (user, session token)."""
        if await self._find_by_email(email):
            raise ConflictError("User already exists")

        user_id = generate_id("user")
        user = User(
            id=user_id,
            email=email,
            name=name,
            image_url=avatar_url(self.avatar_template, user_id),
            password_hash=self.hasher.hash(password),
            role=PLATFORM_ROLE,
        )
        try:
            self.db.add(user)
            await self.db.flush()
            await self.events.append(
                stream_id=f"user:{user.id}",
                event_type=PLATFORM_USER_SIGNED_UP,
                data={"user_id": user.id},
            )
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent signup for the same email.
            await self.db.rollback()
            raise ConflictError("User already exists") from None

        logger.info("platform.signup", user_id=user.id)
        return user, self.tokens.issue_platform_token(user.id)

    async def signin(self, email: str, password: str) -> tuple[User, str]:
        user = await self._find_by_email(email)
        if not user or not user.password_hash:
            raise UnauthenticatedError("Invalid credentials")
        if not self.hasher.verify(password, user.password_hash):
            raise UnauthenticatedError("Invalid credentials")

        logger.info("platform.signin", user_id=user.id)
        return user, self.tokens.issue_platform_token(user.id)

    async def current_user(self, session_token: Optional[str]) -> Optional[User]:
        """Resolve a session cookie to a user, or None.

        Never raises on a bad token: the dashboard asks "who am I?"
        before it knows whether anyone is signed in.
        """
        if not session_token:
            return None
        try:
            payload = self.tokens.verify(session_token, audience=PLATFORM)
        except TokenError:
            return None

        result = await self.db.execute(
            select(User).where(User.id == payload.user_id, User.role == PLATFORM_ROLE)
        )
        return result.scalars().first()
