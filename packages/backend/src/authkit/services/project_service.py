"""Project service — projects, environments, secrets, settings.

Learn: Creating a project is four inserts (project, development
environment, settings, owner link) and they commit together or not at
all. The access guards treat "project without settings" as a broken
invariant, so a half-created project must never become visible.

Every operation is scoped to the calling platform user: a project the
caller isn't an owner of is reported as "not found", never as
"forbidden", so project IDs can't be probed.
"""

from typing import Any, Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from authkit.auth.ids import EnvironmentKeys, generate_environment_keys, generate_id
from authkit.auth.password import CredentialHasher
from authkit.db.models import (
    Project,
    ProjectEnvironment,
    ProjectSettings,
    ProjectUserLink,
)
from authkit.errors import BadRequestError, ConflictError, NotFoundError
from authkit.events.store import EventStore
from authkit.events.types import (
    ENVIRONMENT_CREATED,
    ENVIRONMENT_SECRET_ROTATED,
    PROJECT_CREATED,
    PROJECT_DELETED,
    SETTINGS_UPDATED,
)
from authkit.services.collaborators import generate_slug

logger = structlog.get_logger()

ENVIRONMENT_TYPES = ("development", "production")
SETTINGS_FIELDS = (
    "enable_username",
    "enable_passwordless",
    "email_verification_required",
    "password_min_length",
    "password_max_length",
    "password_require_uppercase",
    "password_require_lowercase",
    "password_require_numbers",
    "password_require_special",
)

_SLUG_ATTEMPTS = 5


class ProjectService:
    """Business logic for the project/environment lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        hasher: CredentialHasher,
        slug_generator: Callable[[], str] = generate_slug,
    ):
        self.db = db
        self.hasher = hasher
        self.slug_generator = slug_generator
        self.events = EventStore(db)

    # ─── Ownership ──────────────────────────────────────

    async def _owned_project(self, user_id: str, project_id: str) -> Project:
        result = await self.db.execute(
            select(Project)
            .join(ProjectUserLink, ProjectUserLink.project_id == Project.id)
            .where(
                Project.id == project_id,
                ProjectUserLink.user_id == user_id,
                ProjectUserLink.role == "owner",
            )
            .options(
                selectinload(Project.environments),
                selectinload(Project.settings),
            )
            .execution_options(populate_existing=True)
        )
        project = result.scalars().first()
        if not project:
            raise NotFoundError("Project not found")
        return project

    async def _unused_slug(self) -> str:
        for _ in range(_SLUG_ATTEMPTS):
            slug = self.slug_generator()
            taken = await self.db.execute(select(Project.id).where(Project.slug == slug))
            if taken.first() is None:
                return slug
        raise ConflictError("Could not allocate a unique project slug")

    # ─── Projects ───────────────────────────────────────

    async def create_project(
        self, owner_id: str, name: str
    ) -> tuple[Project, ProjectEnvironment, EnvironmentKeys]:
        """Create project + development environment + settings + owner link."""
        slug = await self._unused_slug()
        keys = generate_environment_keys("development", self.hasher)

        project = Project(id=generate_id("project"), slug=slug, name=name)
        environment = ProjectEnvironment(
            id=generate_id("env"),
            project_id=project.id,
            type="development",
            publishable_key=keys.publishable_key,
            secret_key_hash=keys.secret_key_hash,
        )
        project_settings = ProjectSettings(
            id=generate_id("settings"), project_id=project.id
        )
        link = ProjectUserLink(
            id=generate_id("link"),
            project_id=project.id,
            user_id=owner_id,
            role="owner",
        )

        try:
            self.db.add(project)
            await self.db.flush()
            self.db.add_all([environment, project_settings, link])
            await self.db.flush()
            await self.events.append(
                stream_id=f"project:{project.id}",
                event_type=PROJECT_CREATED,
                data={
                    "name": name,
                    "slug": slug,
                    "owner_id": owner_id,
                    "environment_id": environment.id,
                },
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Project could not be created") from None

        logger.info("project.created", project_id=project.id, owner_id=owner_id)
        return await self._owned_project(owner_id, project.id), environment, keys

    async def list_projects(self, user_id: str) -> list[Project]:
        result = await self.db.execute(
            select(Project)
            .join(ProjectUserLink, ProjectUserLink.project_id == Project.id)
            .where(ProjectUserLink.user_id == user_id, ProjectUserLink.role == "owner")
            .order_by(Project.created_at, Project.name)
        )
        return list(result.scalars().all())

    async def get_project(self, user_id: str, project_id: str) -> Project:
        return await self._owned_project(user_id, project_id)

    async def delete_project(self, user_id: str, project_id: str) -> None:
        """Delete a project; environments, settings, links, magic links cascade."""
        project = await self._owned_project(user_id, project_id)
        await self.db.delete(project)
        await self.events.append(
            stream_id=f"project:{project_id}",
            event_type=PROJECT_DELETED,
            data={"deleted_by": user_id},
        )
        await self.db.commit()
        logger.info("project.deleted", project_id=project_id, user_id=user_id)

    # ─── Environments ───────────────────────────────────

    async def create_environment(
        self, user_id: str, project_id: str, env_type: str = "production"
    ) -> tuple[ProjectEnvironment, EnvironmentKeys]:
        """Provision an environment. At most one per (project, type)."""
        if env_type not in ENVIRONMENT_TYPES:
            raise BadRequestError(f"Unknown environment type: {env_type}")

        project = await self._owned_project(user_id, project_id)
        conflict = f"{env_type.capitalize()} environment already exists"
        if any(env.type == env_type for env in project.environments):
            raise ConflictError(conflict)

        keys = generate_environment_keys(env_type, self.hasher)
        environment = ProjectEnvironment(
            id=generate_id("env"),
            project_id=project.id,
            type=env_type,
            publishable_key=keys.publishable_key,
            secret_key_hash=keys.secret_key_hash,
        )
        try:
            self.db.add(environment)
            await self.db.flush()
            await self.events.append(
                stream_id=f"env:{environment.id}",
                event_type=ENVIRONMENT_CREATED,
                data={"project_id": project.id, "type": env_type},
            )
            await self.db.commit()
        except IntegrityError:
            # The unique (project_id, type) index caught a concurrent create.
            await self.db.rollback()
            raise ConflictError(conflict) from None

        logger.info(
            "environment.created",
            project_id=project.id,
            environment_id=environment.id,
            type=env_type,
        )
        return environment, keys

    async def rotate_secret(
        self, user_id: str, environment_id: str
    ) -> tuple[ProjectEnvironment, str]:
        """Replace an environment's secret. Returns (environment, new plaintext secret).

        The old secret stops working as soon as this commits.
        """
        result = await self.db.execute(
            select(ProjectEnvironment)
            .join(
                ProjectUserLink,
                ProjectUserLink.project_id == ProjectEnvironment.project_id,
            )
            .where(
                ProjectEnvironment.id == environment_id,
                ProjectUserLink.user_id == user_id,
                ProjectUserLink.role == "owner",
            )
        )
        environment = result.scalars().first()
        if not environment:
            raise NotFoundError("Environment not found")

        keys = generate_environment_keys(environment.type, self.hasher)
        environment.secret_key_hash = keys.secret_key_hash
        await self.events.append(
            stream_id=f"env:{environment.id}",
            event_type=ENVIRONMENT_SECRET_ROTATED,
            data={"project_id": environment.project_id, "rotated_by": user_id},
        )
        await self.db.commit()

        logger.info(
            "environment.secret_rotated",
            project_id=environment.project_id,
            environment_id=environment.id,
        )
        return environment, keys.secret_key

    # ─── Settings ───────────────────────────────────────

    async def update_settings(
        self, user_id: str, project_id: str, changes: dict[str, Any]
    ) -> ProjectSettings:
        """Partial update. Tokens issued under the old policy stay valid."""
        project = await self._owned_project(user_id, project_id)
        project_settings: Optional[ProjectSettings] = project.settings
        if project_settings is None:
            raise NotFoundError("Project settings not found")

        unknown = set(changes) - set(SETTINGS_FIELDS)
        if unknown:
            raise BadRequestError(f"Unknown settings: {', '.join(sorted(unknown))}")

        min_length = changes.get(
            "password_min_length", project_settings.password_min_length
        )
        max_length = changes.get(
            "password_max_length", project_settings.password_max_length
        )
        if min_length > max_length:
            raise BadRequestError(
                "Password minimum length cannot exceed maximum length"
            )

        for field, value in changes.items():
            setattr(project_settings, field, value)

        await self.events.append(
            stream_id=f"project:{project_id}",
            event_type=SETTINGS_UPDATED,
            data={"changes": changes, "updated_by": user_id},
        )
        await self.db.commit()
        await self.db.refresh(project_settings)
        return project_settings
