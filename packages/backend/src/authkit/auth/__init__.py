"""Authentication and authorization.

Learn: Three trust levels, three guards:
1. Public environment  → `publishable-key` header selects an environment
2. Strict environment  → `publishable-key` + `secret-key` prove server-side possession
3. Platform session    → `auth-kit.session` cookie carrying a platform JWT

The leaves (ids, password, jwt, policy) know nothing about HTTP;
guards.py composes them into a pipeline and dependencies.py adapts
that pipeline to FastAPI.
"""
