#!/usr/bin/env python3
"""
AuthKit Quickstart — platform operator to signed-in end-user in one script.

Signs up an operator → creates a project → turns on passwordless →
signs up an end-user → magic link → refresh → server-side user lookup.
Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: http://localhost:8000
"""

import sys
import uuid

import httpx

BASE = "http://localhost:8000/api/v1"
COOKIE = "auth-kit.session"


def main():
    run_id = uuid.uuid4().hex[:6]
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Health check ──────────────────────────────────────────────
    print("Checking backend health...")
    try:
        resp = client.get("/health")
    except httpx.ConnectError:
        print(f"Backend not reachable at {BASE}")
        print("Start it with:  AUTHKIT_CREATE_SCHEMA_ON_STARTUP=1 uvicorn authkit.main:app --port 8000")
        sys.exit(1)
    health = resp.json()
    print(f"  Database: {health['database']}")
    print(f"  Redis:    {health['redis']}")

    # ── Platform operator ─────────────────────────────────────────
    print("\n1. Signing up a platform operator...")
    resp = client.post("/platform/signup", json={
        "email": f"operator-{run_id}@example.com",
        "name": "Demo Operator",
        "password": "demo-password-123",
    })
    assert resp.status_code == 201, f"Failed: {resp.text}"
    operator = resp.json()["user"]
    session = {"Cookie": f"{COOKIE}={resp.cookies[COOKIE]}"}
    print(f"   Operator: {operator['email']} ({operator['id']})")

    # ── Project (auto-creates development environment) ────────────
    print("\n2. Creating project...")
    resp = client.post("/projects", json={"name": "Demo App"}, headers=session)
    assert resp.status_code == 201, f"Failed: {resp.text}"
    created = resp.json()
    project = created["project"]
    env = created["environment"]
    print(f"   Project:         {project['name']} ({project['slug']})")
    print(f"   Publishable key: {env['publishable_key']}")
    print(f"   Secret key:      {env['secret_key'][:12]}...  (shown once)")

    # ── Settings ──────────────────────────────────────────────────
    print("\n3. Enabling passwordless sign in...")
    resp = client.patch(
        f"/projects/{project['id']}/settings",
        json={"enable_passwordless": True},
        headers=session,
    )
    assert resp.status_code == 200, f"Failed: {resp.text}"

    public = {"publishable-key": env["publishable_key"]}
    strict = {**public, "secret-key": env["secret_key"]}

    # ── End-user signup ───────────────────────────────────────────
    print("\n4. Signing up an end-user (no password)...")
    email = f"alice-{run_id}@example.com"
    resp = client.post("/tenant/signup", json={"email": email, "name": "Alice"}, headers=public)
    assert resp.status_code == 201, f"Failed: {resp.text}"
    print(f"   User: {resp.json()['user']['id']}")

    # ── Magic link ────────────────────────────────────────────────
    print("\n5. Requesting a magic link...")
    resp = client.post("/tenant/magic-link/start", json={"email": email}, headers=public)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    magic_url = resp.json()["magic_url"]
    print(f"   Link (development only): {magic_url}")

    token = magic_url.split("token=", 1)[1]
    resp = client.post("/tenant/magic-link/verify", json={"token": token}, headers=public)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    tokens = resp.json()
    print(f"   Signed in, email verified: {tokens['user']['email_verified']}")

    resp = client.post("/tenant/magic-link/verify", json={"token": token}, headers=public)
    print(f"   Replaying the link → {resp.status_code} {resp.json()['detail']}")

    # ── Tokens ────────────────────────────────────────────────────
    print("\n6. Refreshing tokens...")
    resp = client.post(
        "/tenant/refresh", json={"refresh_token": tokens["refresh_token"]}, headers=public
    )
    assert resp.status_code == 200, f"Failed: {resp.text}"
    access = resp.json()["access_token"]
    resp = client.get("/tenant/me", headers={**public, "Authorization": f"Bearer {access}"})
    print(f"   /tenant/me → {resp.json()['email']}")

    # ── Server side ───────────────────────────────────────────────
    print("\n7. Listing users with the secret key...")
    resp = client.get("/tenant/users", headers=strict)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    for user in resp.json():
        print(f"   - {user['email']} (verified={user['email_verified']})")

    print("\nDone.")


if __name__ == "__main__":
    main()
