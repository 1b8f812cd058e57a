"""Platform auth API — dashboard signup, signin, session.

Learn: The platform session lives in an HTTP-only cookie
(`auth-kit.session`), not in a response body. The browser attaches it
automatically and page scripts can't read it.

- POST /platform/signup  → create operator account, set cookie
- POST /platform/signin  → email/password, set cookie
- POST /platform/signout → clear cookie
- GET  /platform/me      → current operator, or null
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from authkit.auth.dependencies import get_app_settings, get_hasher, get_tokens
from authkit.auth.jwt import TokenService
from authkit.auth.password import CredentialHasher
from authkit.config import Settings
from authkit.db.engine import get_db
from authkit.schemas.platform import (
    PlatformSessionRead,
    PlatformSignin,
    PlatformSignup,
    PlatformUserRead,
)
from authkit.services.platform_auth_service import PlatformAuthService

router = APIRouter(prefix="/platform")


def _svc(
    db: AsyncSession = Depends(get_db),
    hasher: CredentialHasher = Depends(get_hasher),
    tokens: TokenService = Depends(get_tokens),
    app_settings: Settings = Depends(get_app_settings),
) -> PlatformAuthService:
    return PlatformAuthService(
        db, hasher, tokens, avatar_template=app_settings.avatar_url_template
    )


def _set_session_cookie(response: Response, token: str, app_settings: Settings) -> None:
    response.set_cookie(
        key=app_settings.session_cookie_name,
        value=token,
        max_age=60 * 60 * 24 * app_settings.platform_token_expire_days,
        httponly=True,
        secure=app_settings.is_production,
        samesite="lax",
        path="/",
    )


@router.post("/signup", response_model=PlatformSessionRead, status_code=201)
async def signup(
    body: PlatformSignup,
    response: Response,
    svc: PlatformAuthService = Depends(_svc),
    app_settings: Settings = Depends(get_app_settings),
):
    """Create a platform account and start a session."""
    user, token = await svc.signup(
        email=body.email, name=body.name, password=body.password
    )
    _set_session_cookie(response, token, app_settings)
    return {"user": user}


@router.post("/signin", response_model=PlatformSessionRead)
async def signin(
    body: PlatformSignin,
    response: Response,
    svc: PlatformAuthService = Depends(_svc),
    app_settings: Settings = Depends(get_app_settings),
):
    user, token = await svc.signin(email=body.email, password=body.password)
    _set_session_cookie(response, token, app_settings)
    return {"user": user}


@router.post("/signout")
async def signout(
    response: Response,
    app_settings: Settings = Depends(get_app_settings),
):
    response.delete_cookie(app_settings.session_cookie_name, path="/")
    return {"signed_out": True}


@router.get("/me", response_model=Optional[PlatformUserRead])
async def me(
    request: Request,
    svc: PlatformAuthService = Depends(_svc),
    app_settings: Settings = Depends(get_app_settings),
):
    """Current platform user, or null when there is no valid session."""
    return await svc.current_user(request.cookies.get(app_settings.session_cookie_name))
