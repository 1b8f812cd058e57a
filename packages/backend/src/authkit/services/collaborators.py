"""Narrow interfaces to things the auth core does not own.

Learn: Slugs, avatars, and email delivery are treated as external
services. The core only needs a callable or a protocol; the defaults
here are minimal and can be replaced at app construction without
touching the flows.
"""

import secrets
from typing import Protocol

import structlog

logger = structlog.get_logger()

_ADJECTIVES = (
    "ancient", "autumn", "billowing", "bitter", "bold", "calm", "cool",
    "crimson", "damp", "dawn", "delicate", "divine", "dry", "empty",
    "falling", "fragrant", "frosty", "gentle", "green", "hidden", "holy",
    "icy", "late", "lingering", "little", "lively", "misty", "morning",
    "muddy", "nameless", "old", "patient", "polished", "proud", "purple",
    "quiet", "red", "restless", "rough", "shy", "silent", "small",
    "snowy", "solitary", "sparkling", "spring", "still", "summer",
    "twilight", "wandering", "weathered", "white", "wild", "winter",
    "wispy", "withered", "young",
)

_NOUNS = (
    "bird", "breeze", "brook", "bush", "butterfly", "cherry", "cloud",
    "darkness", "dawn", "dew", "dream", "dust", "feather", "field",
    "fire", "firefly", "flower", "fog", "forest", "frog", "frost",
    "glade", "glitter", "grass", "haze", "hill", "lake", "leaf", "meadow",
    "moon", "morning", "mountain", "night", "paper", "pine", "pond",
    "rain", "resonance", "river", "sea", "shadow", "shape", "silence",
    "sky", "smoke", "snow", "snowflake", "sound", "star", "sun",
    "sunset", "surf", "thunder", "tree", "violet", "voice", "water",
    "waterfall", "wave", "wildflower", "wind", "wood",
)


def generate_slug() -> str:
    """Human-readable project slug, e.g. "misty-river-42"."""
    adjective = secrets.choice(_ADJECTIVES)
    noun = secrets.choice(_NOUNS)
    return f"{adjective}-{noun}-{secrets.randbelow(90) + 10}"


def avatar_url(template: str, seed: str) -> str:
    return template.format(seed=seed)


class MagicLinkSender(Protocol):
    async def send(self, *, email: str, url: str, project_id: str) -> None: ...


class LogMagicLinkSender:
    """Default sender: records that a link was issued, never the URL itself."""

    async def send(self, *, email: str, url: str, project_id: str) -> None:
        logger.info("magic_link.delivery_stubbed", email=email, project_id=project_id)
