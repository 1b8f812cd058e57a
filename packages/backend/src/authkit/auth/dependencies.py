"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers. They build a
GuardContext from the request and run one of the guard chains in
guards.py. The TokenService and CredentialHasher come from app.state,
where create_app() put them after validating configuration. Nothing
here reads environment variables.

Three guards:
1. public_environment   : `publishable-key` header
2. strict_environment   : `publishable-key` + `secret-key` headers
3. platform_session     : `auth-kit.session` cookie
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from authkit.auth.guards import (
    EnvironmentContext,
    GuardContext,
    PlatformContext,
    authenticate_platform_session,
    authenticate_public_environment,
    authenticate_strict_environment,
)
from authkit.auth.jwt import TokenService
from authkit.auth.password import CredentialHasher
from authkit.config import Settings
from authkit.db.engine import get_db
from authkit.errors import UnauthenticatedError


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_hasher(request: Request) -> CredentialHasher:
    return request.app.state.hasher


def get_tokens(request: Request) -> TokenService:
    return request.app.state.tokens


async def get_guard_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    hasher: CredentialHasher = Depends(get_hasher),
    tokens: TokenService = Depends(get_tokens),
    app_settings: Settings = Depends(get_app_settings),
) -> GuardContext:
    return GuardContext(
        db=db,
        hasher=hasher,
        tokens=tokens,
        headers=request.headers,
        cookies=request.cookies,
        session_cookie_name=app_settings.session_cookie_name,
    )


async def public_environment(
    ctx: GuardContext = Depends(get_guard_context),
) -> EnvironmentContext:
    return await authenticate_public_environment(ctx)


async def strict_environment(
    ctx: GuardContext = Depends(get_guard_context),
) -> EnvironmentContext:
    return await authenticate_strict_environment(ctx)


async def platform_session(
    ctx: GuardContext = Depends(get_guard_context),
) -> PlatformContext:
    return await authenticate_platform_session(ctx)


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    """Extract the token from an `Authorization: Bearer …` header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthenticatedError("Invalid credentials")
    return authorization[7:]
