"""Access guard chain — credential resolution as an ordered pipeline.

Learn: Each guard is a tuple of small async steps. A step receives an
immutable GuardContext and either raises UnauthenticatedError or
returns a NEW context with one more field filled in:

    public-environment:  publishable key → environment → settings
    strict-environment:  publishable key + secret key → environment
                         → secret verified → settings
    platform-session:    session cookie → platform token → user

Every failure in a chain raises the same generic message ("Invalid
credentials" for environments, "Invalid session" for the platform), so a
caller can't tell "no such key" from "wrong key" or "expired" from
"forged".

Nothing here imports FastAPI; dependencies.py adapts these chains to
Depends().
"""

from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Mapping, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authkit.auth.jwt import PLATFORM, TokenService
from authkit.auth.password import CredentialHasher
from authkit.db.models import ProjectEnvironment, ProjectSettings, User
from authkit.errors import TokenError, UnauthenticatedError

logger = structlog.get_logger()

PUBLISHABLE_KEY_HEADER = "publishable-key"
SECRET_KEY_HEADER = "secret-key"
DEFAULT_SESSION_COOKIE = "auth-kit.session"

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_SESSION = "Invalid session"


@dataclass(frozen=True)
class GuardContext:
    """Everything a guard step may read, plus what earlier steps resolved."""

    db: AsyncSession
    hasher: CredentialHasher
    tokens: TokenService
    headers: Mapping[str, str]
    cookies: Mapping[str, str]
    session_cookie_name: str = DEFAULT_SESSION_COOKIE

    # Filled in by steps
    publishable_key: Optional[str] = None
    secret_key: Optional[str] = None
    environment: Optional[ProjectEnvironment] = None
    settings: Optional[ProjectSettings] = None
    session_token: Optional[str] = None
    user: Optional[User] = None


@dataclass(frozen=True)
class EnvironmentContext:
    """Trusted context for tenant-facing operations."""

    environment_id: str
    project_id: str
    environment_type: str
    settings: ProjectSettings


@dataclass(frozen=True)
class PlatformContext:
    """Trusted context for platform (dashboard) operations."""

    user_id: str
    user: User


Step = Callable[[GuardContext], Awaitable[GuardContext]]


async def run_chain(steps: Sequence[Step], ctx: GuardContext) -> GuardContext:
    for step in steps:
        ctx = await step(ctx)
    return ctx


# ─── Environment steps ──────────────────────────────────


async def require_publishable_key(ctx: GuardContext) -> GuardContext:
    key = ctx.headers.get(PUBLISHABLE_KEY_HEADER)
    if not key:
        raise UnauthenticatedError(INVALID_CREDENTIALS)
    return replace(ctx, publishable_key=key)


async def require_secret_key(ctx: GuardContext) -> GuardContext:
    key = ctx.headers.get(SECRET_KEY_HEADER)
    if not key:
        raise UnauthenticatedError(INVALID_CREDENTIALS)
    return replace(ctx, secret_key=key)


async def resolve_environment(ctx: GuardContext) -> GuardContext:
    result = await ctx.db.execute(
        select(ProjectEnvironment).where(
            ProjectEnvironment.publishable_key == ctx.publishable_key
        )
    )
    env = result.scalars().first()
    if not env:
        raise UnauthenticatedError(INVALID_CREDENTIALS)
    return replace(ctx, environment=env)


async def verify_secret_key(ctx: GuardContext) -> GuardContext:
    if not ctx.hasher.verify(ctx.secret_key or "", ctx.environment.secret_key_hash):
        logger.info("guard.secret_key_rejected", environment_id=ctx.environment.id)
        raise UnauthenticatedError(INVALID_CREDENTIALS)
    return ctx


async def load_settings(ctx: GuardContext) -> GuardContext:
    result = await ctx.db.execute(
        select(ProjectSettings).where(
            ProjectSettings.project_id == ctx.environment.project_id
        )
    )
    project_settings = result.scalars().first()
    if not project_settings:
        # A project without settings is never a valid state.
        logger.error(
            "guard.settings_missing", project_id=ctx.environment.project_id
        )
        raise UnauthenticatedError(INVALID_CREDENTIALS)
    return replace(ctx, settings=project_settings)


# ─── Platform steps ─────────────────────────────────────


async def require_session_cookie(ctx: GuardContext) -> GuardContext:
    token = ctx.cookies.get(ctx.session_cookie_name)
    if not token:
        raise UnauthenticatedError(INVALID_SESSION)
    return replace(ctx, session_token=token)


async def resolve_platform_user(ctx: GuardContext) -> GuardContext:
    try:
        payload = ctx.tokens.verify(ctx.session_token, audience=PLATFORM)
    except TokenError:
        raise UnauthenticatedError(INVALID_SESSION) from None

    result = await ctx.db.execute(
        select(User).where(User.id == payload.user_id, User.role == "owner")
    )
    user = result.scalars().first()
    if not user:
        raise UnauthenticatedError(INVALID_SESSION)
    return replace(ctx, user=user)


# ─── Chains ─────────────────────────────────────────────

PUBLIC_ENVIRONMENT_CHAIN: tuple[Step, ...] = (
    require_publishable_key,
    resolve_environment,
    load_settings,
)

STRICT_ENVIRONMENT_CHAIN: tuple[Step, ...] = (
    require_publishable_key,
    require_secret_key,
    resolve_environment,
    verify_secret_key,
    load_settings,
)

PLATFORM_SESSION_CHAIN: tuple[Step, ...] = (
    require_session_cookie,
    resolve_platform_user,
)


def _environment_context(ctx: GuardContext) -> EnvironmentContext:
    return EnvironmentContext(
        environment_id=ctx.environment.id,
        project_id=ctx.environment.project_id,
        environment_type=ctx.environment.type,
        settings=ctx.settings,
    )


async def authenticate_public_environment(ctx: GuardContext) -> EnvironmentContext:
    return _environment_context(await run_chain(PUBLIC_ENVIRONMENT_CHAIN, ctx))


async def authenticate_strict_environment(ctx: GuardContext) -> EnvironmentContext:
    return _environment_context(await run_chain(STRICT_ENVIRONMENT_CHAIN, ctx))


async def authenticate_platform_session(ctx: GuardContext) -> PlatformContext:
    ctx = await run_chain(PLATFORM_SESSION_CHAIN, ctx)
    return PlatformContext(user_id=ctx.user.id, user=ctx.user)
