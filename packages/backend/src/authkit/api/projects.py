"""Project, environment, and settings API routes.

Learn: Every route here runs behind the platform-session guard and
passes the caller's user id down to the service, which scopes each
query to projects the caller owns. Routes handle HTTP concerns,
services handle business logic.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from authkit.auth.dependencies import get_hasher, platform_session
from authkit.auth.guards import PlatformContext
from authkit.auth.password import CredentialHasher
from authkit.db.engine import get_db
from authkit.db.models import ProjectEnvironment
from authkit.schemas.project import (
    EnvironmentCreate,
    EnvironmentRead,
    EnvironmentWithSecret,
    ProjectCreate,
    ProjectCreated,
    ProjectDetail,
    ProjectRead,
    SettingsRead,
    SettingsUpdate,
)
from authkit.services.project_service import ProjectService

router = APIRouter()


def _svc(
    db: AsyncSession = Depends(get_db),
    hasher: CredentialHasher = Depends(get_hasher),
) -> ProjectService:
    return ProjectService(db, hasher)


def _with_secret(environment: ProjectEnvironment, secret_key: str) -> EnvironmentWithSecret:
    return EnvironmentWithSecret(
        **EnvironmentRead.model_validate(environment).model_dump(),
        secret_key=secret_key,
    )


# ─── Projects ───────────────────────────────────────────

@router.post("/projects", response_model=ProjectCreated, status_code=201)
async def create_project(
    body: ProjectCreate,
    platform: PlatformContext = Depends(platform_session),
    svc: ProjectService = Depends(_svc),
):
    """Create a project with its development environment and default settings.

    The environment's secret key is in this response and nowhere else.
    """
    project, environment, keys = await svc.create_project(platform.user_id, body.name)
    return {
        "project": ProjectDetail.model_validate(project),
        "environment": _with_secret(environment, keys.secret_key),
    }


@router.get("/projects", response_model=list[ProjectRead])
async def list_projects(
    platform: PlatformContext = Depends(platform_session),
    svc: ProjectService = Depends(_svc),
):
    return await svc.list_projects(platform.user_id)


@router.get("/projects/{project_id}", response_model=ProjectDetail)
async def get_project(
    project_id: str,
    platform: PlatformContext = Depends(platform_session),
    svc: ProjectService = Depends(_svc),
):
    return await svc.get_project(platform.user_id, project_id)


@router.delete("/projects/{project_id}")
async def delete_project(
    project_id: str,
    platform: PlatformContext = Depends(platform_session),
    svc: ProjectService = Depends(_svc),
):
    await svc.delete_project(platform.user_id, project_id)
    return {"deleted": True}


# ─── Environments ───────────────────────────────────────

@router.post(
    "/projects/{project_id}/environments",
    response_model=EnvironmentWithSecret,
    status_code=201,
)
async def create_environment(
    project_id: str,
    body: Optional[EnvironmentCreate] = None,
    platform: PlatformContext = Depends(platform_session),
    svc: ProjectService = Depends(_svc),
):
    """Provision the production environment (at most one per project)."""
    env_type = body.type if body else "production"
    environment, keys = await svc.create_environment(
        platform.user_id, project_id, env_type
    )
    return _with_secret(environment, keys.secret_key)


@router.post(
    "/environments/{environment_id}/rotate-secret",
    response_model=EnvironmentWithSecret,
)
async def rotate_secret(
    environment_id: str,
    platform: PlatformContext = Depends(platform_session),
    svc: ProjectService = Depends(_svc),
):
    """Issue a new secret key. The previous one stops working immediately."""
    environment, secret_key = await svc.rotate_secret(platform.user_id, environment_id)
    return _with_secret(environment, secret_key)


# ─── Settings ───────────────────────────────────────────

@router.patch("/projects/{project_id}/settings", response_model=SettingsRead)
async def update_settings(
    project_id: str,
    body: SettingsUpdate,
    platform: PlatformContext = Depends(platform_session),
    svc: ProjectService = Depends(_svc),
):
    return await svc.update_settings(platform.user_id, project_id, body.changes())
