"""FastAPI application factory.

Learn: App factory pattern. create_app() returns a configured FastAPI
instance. The long-lived collaborators (TokenService, CredentialHasher,
MagicLinkSender) are built here once, from validated Settings, and
hung on app.state; request handlers reach them through the
dependencies in auth/dependencies.py. A bad configuration therefore
fails when the app is constructed, not on the first signin.

Lifespan manages startup/shutdown (Redis pool, optional schema
creation, engine disposal).
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from authkit import __version__
from authkit.api import api_router
from authkit.auth.jwt import TokenService
from authkit.auth.password import CredentialHasher
from authkit.config import Settings, settings
from authkit.errors import AuthKitError, UnauthenticatedError
from authkit.services.collaborators import LogMagicLinkSender, MagicLinkSender

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    app_settings: Settings = app.state.settings
    logger.info(
        "authkit.starting",
        version=__version__,
        environment=app_settings.environment,
        port=app_settings.port,
    )

    from authkit.db.redis_pool import close_redis, init_redis
    try:
        await init_redis(app_settings.redis_url)
        logger.info("authkit.redis_connected")
    except Exception as e:
        logger.warning("authkit.redis_unavailable", error=str(e))
        # Redis is optional, only rate limiting depends on it

    from authkit.db.engine import create_schema, engine
    if app_settings.create_schema_on_startup:
        await create_schema(engine)
        logger.info("authkit.schema_created")

    yield

    logger.info("authkit.shutdown")
    await close_redis()
    await engine.dispose()


async def authkit_error_handler(request: Request, exc: AuthKitError) -> JSONResponse:
    """Render service and guard errors as {"detail": ..., "code": ...}."""
    headers = None
    if isinstance(exc, UnauthenticatedError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


def create_app(
    app_settings: Optional[Settings] = None,
    magic_link_sender: Optional[MagicLinkSender] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    app_settings = app_settings or settings

    app = FastAPI(
        title="AuthKit",
        description="Multi-tenant authentication backend: projects, environment keys, end-user auth",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = app_settings
    app.state.hasher = CredentialHasher(rounds=app_settings.bcrypt_rounds)
    app.state.tokens = TokenService.from_settings(app_settings)
    app.state.magic_link_sender = magic_link_sender or LogMagicLinkSender()

    app.add_exception_handler(AuthKitError, authkit_error_handler)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from authkit.middleware.rate_limit import RateLimitMiddleware
    from authkit.middleware.request_id import RequestIdMiddleware
    from authkit.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=app_settings.rate_limit_rpm,
        auth_rpm=app_settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: authkit.main:app)
app = create_app()
