"""Magic-link tests — issue, deliver, verify, single use.

Learn: A magic link may be redeemed exactly once. The service checks
consumed_at for a friendly error, but the real guarantee is the
compare-and-set UPDATE: test_lost_race_is_rejected makes the stored
row change underneath an in-flight verify and checks the loser fails.
"""

from datetime import timedelta

import pytest
from sqlalchemy import delete, select, update

from authkit.auth.guards import EnvironmentContext
from authkit.auth.jwt import TokenService, utcnow
from authkit.auth.password import CredentialHasher
from authkit.db.models import (
    Event,
    MagicLink,
    ProjectEnvironment,
    ProjectSettings,
    ProjectUserLink,
)
from authkit.errors import BadRequestError
from authkit.main import app
from authkit.services.tenant_auth_service import TenantAuthService
from helpers import FailingSender, STRONG_PASSWORD


@pytest.fixture()
def passwordless(update_settings):
    async def _enable():
        return await update_settings(enable_passwordless=True)

    return _enable


async def _tenant(client, headers, email="alice@example.com", password=None):
    body = {"email": email, "name": "Alice"}
    if password:
        body["password"] = password
    r = await client.post("/api/v1/tenant/signup", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["user"]


async def _start(client, headers, email="alice@example.com"):
    return await client.post(
        "/api/v1/tenant/magic-link/start", json={"email": email}, headers=headers
    )


async def _verify(client, headers, token):
    return await client.post(
        "/api/v1/tenant/magic-link/verify", json={"token": token}, headers=headers
    )


# ═══════════════════════════════════════════════════════════
# Start
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_start_requires_passwordless(client, tenant_headers):
    await _tenant(client, tenant_headers, password=STRONG_PASSWORD)
    r = await _start(client, tenant_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Passwordless sign in is not enabled"


@pytest.mark.asyncio
async def test_start_unknown_user(client, tenant_headers, passwordless):
    await passwordless()
    r = await _start(client, tenant_headers, email="ghost@example.com")
    assert r.status_code == 404
    assert r.json()["detail"] == "User not found"


@pytest.mark.asyncio
async def test_start_delivers_link(client, tenant_headers, passwordless, sender, project):
    await passwordless()
    await _tenant(client, tenant_headers)

    r = await _start(client, tenant_headers)
    assert r.status_code == 200
    body = r.json()

    assert len(sender.sent) == 1
    message = sender.sent[0]
    assert message["email"] == "alice@example.com"
    assert message["project_id"] == project["id"]
    assert message["url"].startswith("http://localhost:3000/auth/verify?token=")
    assert len(sender.last_token) == 32

    # Development environments echo the link back for local testing.
    assert body["magic_url"] == message["url"]


@pytest.mark.asyncio
async def test_production_does_not_echo_link(
    client, platform_user, project, passwordless, sender
):
    await passwordless()
    r = await client.post(
        f"/api/v1/projects/{project['id']}/environments",
        headers=platform_user["headers"],
    )
    live_headers = {"publishable-key": r.json()["publishable_key"]}
    await _tenant(client, live_headers)

    r = await _start(client, live_headers)
    assert r.status_code == 200
    assert r.json()["magic_url"] is None
    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_delivery_failure_keeps_link(client, tenant_headers, passwordless, db_session):
    await passwordless()
    await _tenant(client, tenant_headers)

    previous = app.state.magic_link_sender
    app.state.magic_link_sender = FailingSender()
    try:
        r = await _start(client, tenant_headers)
    finally:
        app.state.magic_link_sender = previous

    assert r.status_code == 200
    token = r.json()["magic_url"].split("token=", 1)[1]
    stored = await db_session.execute(select(MagicLink).where(MagicLink.token == token))
    assert stored.scalars().first() is not None

    assert (await _verify(client, tenant_headers, token)).status_code == 200


# ═══════════════════════════════════════════════════════════
# Verify
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_verify_signs_in_and_verifies_email(
    client, tenant_headers, passwordless, sender, update_settings
):
    await passwordless()
    await update_settings(email_verification_required=True)
    user = await _tenant(client, tenant_headers)
    assert user["email_verified"] is False

    await _start(client, tenant_headers)
    r = await _verify(client, tenant_headers, sender.last_token)
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["id"] == user["id"]
    assert body["user"]["email_verified"] is True
    assert body["access_token"]
    assert body["refresh_token"]


@pytest.mark.asyncio
async def test_verify_appends_events(client, tenant_headers, passwordless, sender, db_session):
    await passwordless()
    user = await _tenant(client, tenant_headers)
    await _start(client, tenant_headers)
    await _verify(client, tenant_headers, sender.last_token)

    result = await db_session.execute(
        select(Event.type).where(Event.stream_id == f"user:{user['id']}").order_by(Event.id)
    )
    assert result.scalars().all() == [
        "tenant.user_signed_up",
        "magic_link.issued",
        "magic_link.consumed",
    ]


@pytest.mark.asyncio
async def test_replay_is_rejected(client, tenant_headers, passwordless, sender):
    await passwordless()
    await _tenant(client, tenant_headers)
    await _start(client, tenant_headers)

    assert (await _verify(client, tenant_headers, sender.last_token)).status_code == 200
    r = await _verify(client, tenant_headers, sender.last_token)
    assert r.status_code == 400
    assert r.json()["detail"] == "Magic link has already been used"


@pytest.mark.asyncio
async def test_lost_race_is_rejected(client, tenant_headers, passwordless, sender, db_session):
    """Another verifier claims the link after our read but before our claim."""
    await passwordless()
    await _tenant(client, tenant_headers)
    await _start(client, tenant_headers)
    token = sender.last_token
    result = await db_session.execute(select(MagicLink).where(MagicLink.token == token))
    stale = result.scalars().first()

    # The ORM copy of the link keeps consumed_at=None; only the stored row
    # changes, as if a concurrent request won.
    await db_session.execute(
        update(MagicLink)
        .where(MagicLink.token == token)
        .values(consumed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()
    assert stale.consumed_at is None

    r = await _verify(client, tenant_headers, token)
    assert r.status_code == 400
    assert r.json()["detail"] == "Magic link has already been used"


@pytest.mark.asyncio
async def test_expired_link(client, tenant_headers, passwordless, sender, db_session):
    await passwordless()
    await _tenant(client, tenant_headers)
    await _start(client, tenant_headers)

    result = await db_session.execute(
        select(MagicLink).where(MagicLink.token == sender.last_token)
    )
    link = result.scalars().first()
    link.expires_at = utcnow() - timedelta(seconds=1)
    await db_session.commit()

    r = await _verify(client, tenant_headers, sender.last_token)
    assert r.status_code == 400
    assert r.json()["detail"] == "Magic link has expired"


@pytest.mark.asyncio
async def test_unknown_token(client, tenant_headers):
    r = await _verify(client, tenant_headers, "x" * 32)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid or expired magic link"


@pytest.mark.asyncio
async def test_link_is_scoped_to_environment(
    client, platform_user, project, tenant_headers, passwordless, sender
):
    await passwordless()
    await _tenant(client, tenant_headers)
    await _start(client, tenant_headers)

    r = await client.post(
        f"/api/v1/projects/{project['id']}/environments",
        headers=platform_user["headers"],
    )
    live_headers = {"publishable-key": r.json()["publishable_key"]}

    r = await _verify(client, live_headers, sender.last_token)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid or expired magic link"


@pytest.mark.asyncio
async def test_verify_registers_user_without_membership(
    client, tenant_headers, project, passwordless, sender, db_session
):
    """A link whose user left the project signs in a freshly registered member."""
    await passwordless()
    old = await _tenant(client, tenant_headers)
    await _start(client, tenant_headers)

    await db_session.execute(
        delete(ProjectUserLink).where(ProjectUserLink.user_id == old["id"])
    )
    await db_session.commit()

    r = await _verify(client, tenant_headers, sender.last_token)
    assert r.status_code == 200, r.text
    body = r.json()
    user = body["user"]
    assert user["id"] != old["id"]
    assert user["email"] == "alice@example.com"
    assert user["email_verified"] is True
    assert body["access_token"]
    assert body["refresh_token"]

    links = await db_session.execute(
        select(ProjectUserLink).where(
            ProjectUserLink.project_id == project["id"],
            ProjectUserLink.role == "member",
        )
    )
    [link] = links.scalars().all()
    assert link.user_id == user["id"]
    assert link.member_email == "alice@example.com"

    stored = await db_session.execute(
        select(MagicLink)
        .where(MagicLink.token == sender.last_token)
        .execution_options(populate_existing=True)
    )
    assert stored.scalars().one().consumed_at is not None

    r = await client.get(
        "/api/v1/tenant/me",
        headers={**tenant_headers, "Authorization": f"Bearer {body['access_token']}"},
    )
    assert r.status_code == 200
    assert r.json()["id"] == user["id"]


# ═══════════════════════════════════════════════════════════
# Service level (fixed clock)
# ═══════════════════════════════════════════════════════════


async def _service(db_session, project, clock) -> TenantAuthService:
    env = (
        await db_session.execute(
            select(ProjectEnvironment).where(
                ProjectEnvironment.id == project["environment"]["id"]
            )
        )
    ).scalars().one()
    project_settings = (
        await db_session.execute(
            select(ProjectSettings).where(ProjectSettings.project_id == project["id"])
        )
    ).scalars().one()
    ctx = EnvironmentContext(
        environment_id=env.id,
        project_id=env.project_id,
        environment_type=env.type,
        settings=project_settings,
    )
    return TenantAuthService(
        db_session,
        ctx,
        CredentialHasher(rounds=4),
        TokenService("service-test-secret", clock=clock),
        avatar_template="https://avatars.test/{seed}",
        app_base_url="https://app.test/",
        sender=FailingSender(),
        clock=clock,
    )


@pytest.mark.asyncio
async def test_link_valid_until_exact_expiry(
    client, tenant_headers, project, passwordless, db_session
):
    await passwordless()
    await _tenant(client, tenant_headers)

    now = utcnow()
    moments = {"now": now}
    svc = await _service(db_session, project, lambda: moments["now"])

    issued = await svc.start_magic_link("alice@example.com")
    assert issued.url.startswith("https://app.test/auth/verify?token=")
    assert issued.expires_at == now + timedelta(minutes=15)

    moments["now"] = issued.expires_at
    session = await svc.verify_magic_link(issued.url.split("token=", 1)[1])
    assert session.member.user.email == "alice@example.com"


@pytest.mark.asyncio
async def test_link_expired_one_second_late(
    client, tenant_headers, project, passwordless, db_session
):
    await passwordless()
    await _tenant(client, tenant_headers)

    moments = {"now": utcnow()}
    svc = await _service(db_session, project, lambda: moments["now"])
    issued = await svc.start_magic_link("alice@example.com")

    moments["now"] = issued.expires_at + timedelta(seconds=1)
    with pytest.raises(BadRequestError, match="Magic link has expired"):
        await svc.verify_magic_link(issued.url.split("token=", 1)[1])
