"""Platform (dashboard) auth tests.

Learn: Tests cover:
1. Signup sets the HTTP-only session cookie
2. Duplicate platform emails are rejected
3. Signin with good and bad credentials
4. /platform/me soft-fails to null
5. Signout clears the cookie
"""

import uuid

import pytest

from helpers import STRONG_PASSWORD, cookie_headers, session_cookie


def _email(prefix: str = "op") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


# ═══════════════════════════════════════════════════════════
# Signup
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_signup_sets_session_cookie(client):
    email = _email()
    r = await client.post(
        "/api/v1/platform/signup",
        json={"email": email, "name": "Operator", "password": STRONG_PASSWORD},
    )
    assert r.status_code == 201
    user = r.json()["user"]
    assert user["email"] == email
    assert user["role"] == "owner"
    assert user["id"].startswith("user_")
    assert user["id"] in user["image_url"]
    assert "password_hash" not in user

    cookie = r.headers["set-cookie"].lower()
    assert "httponly" in cookie
    assert "samesite=lax" in cookie
    assert "max-age=604800" in cookie
    assert session_cookie(r)


@pytest.mark.asyncio
async def test_signup_duplicate_email(client):
    body = {"email": _email("dup"), "name": "Op", "password": STRONG_PASSWORD}
    assert (await client.post("/api/v1/platform/signup", json=body)).status_code == 201

    r = await client.post("/api/v1/platform/signup", json=body)
    assert r.status_code == 409
    assert r.json() == {"detail": "User already exists", "code": "CONFLICT"}


@pytest.mark.asyncio
async def test_signup_short_password(client):
    r = await client.post(
        "/api/v1/platform/signup",
        json={"email": _email(), "name": "Op", "password": "abc"},
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_signup_invalid_email(client):
    r = await client.post(
        "/api/v1/platform/signup",
        json={"email": "not-an-email", "name": "Op", "password": STRONG_PASSWORD},
    )
    assert r.status_code == 422


# ═══════════════════════════════════════════════════════════
# Signin
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_signin_success(client, platform_user):
    r = await client.post(
        "/api/v1/platform/signin",
        json={"email": platform_user["user"]["email"], "password": STRONG_PASSWORD},
    )
    assert r.status_code == 200
    assert r.json()["user"]["id"] == platform_user["user"]["id"]
    assert session_cookie(r)


@pytest.mark.asyncio
async def test_signin_wrong_password(client, platform_user):
    r = await client.post(
        "/api/v1/platform/signin",
        json={"email": platform_user["user"]["email"], "password": "wrong-password"},
    )
    assert r.status_code == 401
    assert r.json() == {"detail": "Invalid credentials", "code": "UNAUTHENTICATED"}


@pytest.mark.asyncio
async def test_signin_unknown_email_looks_the_same(client):
    r = await client.post(
        "/api/v1/platform/signin",
        json={"email": _email("ghost"), "password": STRONG_PASSWORD},
    )
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_tenant_user_cannot_sign_in_to_platform(client, tenant_headers):
    """A tenant end-user with the same email is not a platform user."""
    email = _email("tenant")
    r = await client.post(
        "/api/v1/tenant/signup",
        json={"email": email, "name": "T", "password": STRONG_PASSWORD},
        headers=tenant_headers,
    )
    assert r.status_code == 201

    r = await client.post(
        "/api/v1/platform/signin",
        json={"email": email, "password": STRONG_PASSWORD},
    )
    assert r.status_code == 401

    # ...and can still register as a platform user separately.
    r = await client.post(
        "/api/v1/platform/signup",
        json={"email": email, "name": "Now an operator", "password": STRONG_PASSWORD},
    )
    assert r.status_code == 201


# ═══════════════════════════════════════════════════════════
# Session
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_with_cookie(client, platform_user):
    r = await client.get("/api/v1/platform/me", headers=platform_user["headers"])
    assert r.status_code == 200
    assert r.json()["id"] == platform_user["user"]["id"]


@pytest.mark.asyncio
async def test_me_without_cookie_is_null(client):
    r = await client.get("/api/v1/platform/me")
    assert r.status_code == 200
    assert r.json() is None


@pytest.mark.asyncio
async def test_me_with_garbage_cookie_is_null(client):
    r = await client.get("/api/v1/platform/me", headers=cookie_headers("garbage"))
    assert r.status_code == 200
    assert r.json() is None


@pytest.mark.asyncio
async def test_signout_clears_cookie(client, platform_user):
    r = await client.post("/api/v1/platform/signout", headers=platform_user["headers"])
    assert r.status_code == 200
    cookie = r.headers["set-cookie"]
    assert cookie.startswith("auth-kit.session=")
    assert "Max-Age=0" in cookie
