"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover every audited state transition.
"""

# ─── Platform ───────────────────────────────────────────

PLATFORM_USER_SIGNED_UP = "platform.user_signed_up"

# ─── Project lifecycle ──────────────────────────────────

PROJECT_CREATED = "project.created"
PROJECT_DELETED = "project.deleted"
ENVIRONMENT_CREATED = "environment.created"
ENVIRONMENT_SECRET_ROTATED = "environment.secret_rotated"
SETTINGS_UPDATED = "settings.updated"

# ─── Tenant identity ────────────────────────────────────

TENANT_USER_SIGNED_UP = "tenant.user_signed_up"
MAGIC_LINK_ISSUED = "magic_link.issued"
MAGIC_LINK_CONSUMED = "magic_link.consumed"
