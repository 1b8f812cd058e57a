"""Test fixtures — a fresh in-memory database per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own in-memory SQLite engine (aiosqlite + StaticPool,
   so every connection sees the same memory database) with the schema
   created from the model metadata.
2. The app's get_db dependency is overridden to hand out one shared
   session, so tests can inspect (and tamper with) rows the API wrote.
3. When the test ends the engine is disposed and the database is gone.

Environment variables are set before authkit is imported: Settings is
read once at import time, and bcrypt at 4 rounds keeps the suite fast.
"""

import os

os.environ["AUTHKIT_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["AUTHKIT_BCRYPT_ROUNDS"] = "4"
os.environ["AUTHKIT_ENVIRONMENT"] = "development"

import uuid  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from authkit.db.engine import (  # noqa: E402
    build_engine,
    build_session_factory,
    create_schema,
    get_db,
)
from authkit.main import app  # noqa: E402
from helpers import (  # noqa: E402
    STRONG_PASSWORD,
    RecordingSender,
    cookie_headers,
    session_cookie,
)


@pytest_asyncio.fixture()
async def db_engine():
    engine = build_engine("sqlite+aiosqlite://")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(db_engine):
    """One session shared by the test and every request it makes."""
    async with build_session_factory(db_engine)() as session:
        yield session


@pytest_asyncio.fixture()
async def sender():
    recording = RecordingSender()
    previous = app.state.magic_link_sender
    app.state.magic_link_sender = recording
    yield recording
    app.state.magic_link_sender = previous


@pytest_asyncio.fixture()
async def client(db_session, sender):
    """HTTP client talking to the app in-process, with get_db overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def platform_user(client):
    """A signed-up platform operator: {"user", "token", "headers", "password"}."""
    email = f"owner-{uuid.uuid4().hex[:8]}@example.com"
    r = await client.post(
        "/api/v1/platform/signup",
        json={"email": email, "name": "Owner", "password": STRONG_PASSWORD},
    )
    assert r.status_code == 201, r.text
    token = session_cookie(r)
    return {
        "user": r.json()["user"],
        "token": token,
        "headers": cookie_headers(token),
        "password": STRONG_PASSWORD,
    }


@pytest_asyncio.fixture()
async def project(client, platform_user):
    """A fresh project with its development environment and keys."""
    r = await client.post(
        "/api/v1/projects",
        json={"name": "Acme"},
        headers=platform_user["headers"],
    )
    assert r.status_code == 201, r.text
    body = r.json()
    return {
        "id": body["project"]["id"],
        "project": body["project"],
        "environment": body["environment"],
        "publishable_key": body["environment"]["publishable_key"],
        "secret_key": body["environment"]["secret_key"],
    }


@pytest_asyncio.fixture()
async def tenant_headers(project):
    return {"publishable-key": project["publishable_key"]}


@pytest_asyncio.fixture()
async def strict_headers(project):
    return {
        "publishable-key": project["publishable_key"],
        "secret-key": project["secret_key"],
    }


@pytest_asyncio.fixture()
async def update_settings(client, platform_user, project):
    """Callable that PATCHes the project's settings and returns the new values."""

    async def _update(**changes):
        r = await client.patch(
            f"/api/v1/projects/{project['id']}/settings",
            json=changes,
            headers=platform_user["headers"],
        )
        assert r.status_code == 200, r.text
        return r.json()

    return _update
