"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Unlike a single "logged in or not" check, each router here sits
behind a different guard, and the handlers need the guard's result
(the environment or the platform user). So guards are declared per
route with Depends() instead of at the include_router level.

- health, platform:  open (platform/me soft-fails to null)
- projects:          platform session cookie
- tenant:            publishable key (users: + secret key)
"""

from fastapi import APIRouter

from authkit.api.health import router as health_router
from authkit.api.platform import router as platform_router
from authkit.api.projects import router as projects_router
from authkit.api.tenant import router as tenant_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(platform_router, tags=["platform"])
api_router.include_router(projects_router, tags=["projects", "environments"])
api_router.include_router(tenant_router, tags=["tenant"])
