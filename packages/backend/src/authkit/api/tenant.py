"""Tenant auth API — end-user flows of a customer project.

Learn: These routes are called from the customer's frontend, so they
only ever see the publishable key. The guard resolves that key to an
environment and its project settings before the handler runs; the
service then works strictly inside that project.

The /tenant/users routes are the exception: they need the secret key
too (strict guard) and are meant for the customer's backend.
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from authkit.auth.dependencies import (
    bearer_token,
    get_app_settings,
    get_hasher,
    get_tokens,
    public_environment,
    strict_environment,
)
from authkit.auth.guards import EnvironmentContext
from authkit.auth.jwt import TokenService
from authkit.auth.password import CredentialHasher
from authkit.config import Settings
from authkit.db.engine import get_db
from authkit.schemas.tenant import (
    MagicLinkStart,
    MagicLinkStarted,
    MagicLinkVerify,
    RefreshRequest,
    TenantSessionRead,
    TenantSignin,
    TenantSignup,
    TenantUserRead,
)
from authkit.services.tenant_auth_service import (
    TenantAuthService,
    TenantSession,
    TenantUser,
)

router = APIRouter(prefix="/tenant")


def _build(
    request: Request,
    env: EnvironmentContext,
    db: AsyncSession,
    hasher: CredentialHasher,
    tokens: TokenService,
    app_settings: Settings,
) -> TenantAuthService:
    return TenantAuthService(
        db,
        env,
        hasher,
        tokens,
        avatar_template=app_settings.avatar_url_template,
        app_base_url=app_settings.app_base_url,
        magic_link_ttl=timedelta(minutes=app_settings.magic_link_expire_minutes),
        sender=request.app.state.magic_link_sender,
    )


def _svc(
    request: Request,
    env: EnvironmentContext = Depends(public_environment),
    db: AsyncSession = Depends(get_db),
    hasher: CredentialHasher = Depends(get_hasher),
    tokens: TokenService = Depends(get_tokens),
    app_settings: Settings = Depends(get_app_settings),
) -> TenantAuthService:
    return _build(request, env, db, hasher, tokens, app_settings)


def _strict_svc(
    request: Request,
    env: EnvironmentContext = Depends(strict_environment),
    db: AsyncSession = Depends(get_db),
    hasher: CredentialHasher = Depends(get_hasher),
    tokens: TokenService = Depends(get_tokens),
    app_settings: Settings = Depends(get_app_settings),
) -> TenantAuthService:
    return _build(request, env, db, hasher, tokens, app_settings)


def _user_read(member: TenantUser) -> TenantUserRead:
    user = member.user
    return TenantUserRead(
        id=user.id,
        email=user.email,
        name=user.name,
        image_url=user.image_url,
        username=member.username,
        email_verified=user.email_verified,
        created_at=user.created_at,
    )


def _session_read(session: TenantSession) -> TenantSessionRead:
    return TenantSessionRead(
        user=_user_read(session.member),
        access_token=session.tokens.access_token,
        refresh_token=session.tokens.refresh_token,
    )


# ─── Password flows ─────────────────────────────────────

@router.post("/signup", response_model=TenantSessionRead, status_code=201)
async def signup(body: TenantSignup, svc: TenantAuthService = Depends(_svc)):
    """Register an end-user in the project behind the publishable key."""
    session = await svc.signup(
        email=body.email,
        name=body.name,
        username=body.username,
        password=body.password,
    )
    return _session_read(session)


@router.post("/signin", response_model=TenantSessionRead)
async def signin(body: TenantSignin, svc: TenantAuthService = Depends(_svc)):
    """Sign in with email or username (an identifier containing "@" is an email)."""
    session = await svc.signin(identifier=body.identifier, password=body.password)
    return _session_read(session)


# ─── Magic links ────────────────────────────────────────

@router.post("/magic-link/start", response_model=MagicLinkStarted)
async def start_magic_link(body: MagicLinkStart, svc: TenantAuthService = Depends(_svc)):
    """Issue a magic link and hand it to the sender.

    The link URL is echoed back as magic_url only for development
    environments. Production responses leave it null: the link is the
    sole credential, so it must reach the user through the sender.
    """
    issued = await svc.start_magic_link(body.email)
    magic_url = issued.url if svc.ctx.environment_type == "development" else None
    return MagicLinkStarted(magic_url=magic_url, expires_at=issued.expires_at)


@router.post("/magic-link/verify", response_model=TenantSessionRead)
async def verify_magic_link(body: MagicLinkVerify, svc: TenantAuthService = Depends(_svc)):
    session = await svc.verify_magic_link(body.token)
    return _session_read(session)


# ─── Tokens ─────────────────────────────────────────────

@router.post("/refresh", response_model=TenantSessionRead)
async def refresh(body: RefreshRequest, svc: TenantAuthService = Depends(_svc)):
    session = await svc.refresh(body.refresh_token)
    return _session_read(session)


@router.get("/me", response_model=TenantUserRead)
async def me(
    token: str = Depends(bearer_token),
    svc: TenantAuthService = Depends(_svc),
):
    """Current end-user from an access token. Refresh tokens are rejected."""
    return _user_read(await svc.current_user(token))


# ─── Server-side user management ────────────────────────

@router.get("/users", response_model=list[TenantUserRead])
async def list_users(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    svc: TenantAuthService = Depends(_strict_svc),
):
    members = await svc.list_users(limit=limit, offset=offset)
    return [_user_read(m) for m in members]


@router.get("/users/{user_id}", response_model=TenantUserRead)
async def get_user(user_id: str, svc: TenantAuthService = Depends(_strict_svc)):
    return _user_read(await svc.get_user(user_id))
