"""Opaque identifiers and environment key pairs.

Learn: IDs look like "user_V1StGXR8Z5jd": a category prefix plus 12
characters from a 62-symbol alphabet (~71 bits). Collisions are
negligible but not impossible; the primary key constraint is what
actually guarantees uniqueness.

Environment keys follow the Stripe convention: pk_test_/sk_test_ for
development, pk_live_/sk_live_ for production. Only the publishable key
is stored in plaintext. The secret key is hashed immediately and the
plaintext is handed back to the caller exactly once.
"""

import secrets
import string
from dataclasses import dataclass

from authkit.auth.password import CredentialHasher

ALPHABET = string.digits + string.ascii_lowercase + string.ascii_uppercase

ID_LENGTH = 12
KEY_CORE_LENGTH = 24
MAGIC_TOKEN_LENGTH = 32

ID_CATEGORIES = frozenset(
    {"user", "project", "env", "settings", "link", "magic"}
)

_KEY_MODES = {"development": "test", "production": "live"}


def random_string(length: int) -> str:
    """Cryptographically random string over ALPHABET."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def generate_id(category: str) -> str:
    """Return "{category}_{random12}"."""
    if category not in ID_CATEGORIES:
        raise ValueError(f"Unknown id category: {category}")
    return f"{category}_{random_string(ID_LENGTH)}"


def generate_magic_token() -> str:
    return random_string(MAGIC_TOKEN_LENGTH)


@dataclass(frozen=True)
class EnvironmentKeys:
    """A freshly generated key pair.

    `secret_key` is the only copy of the plaintext secret. Return it to
    the caller and let it go out of scope; persist `secret_key_hash`.
    """

    publishable_key: str
    secret_key: str
    secret_key_hash: str

    def __repr__(self) -> str:
        return f"EnvironmentKeys(publishable_key={self.publishable_key!r})"


def generate_environment_keys(
    env_type: str, hasher: CredentialHasher
) -> EnvironmentKeys:
    """Draw a publishable/secret pair for an environment type."""
    try:
        mode = _KEY_MODES[env_type]
    except KeyError:
        raise ValueError(f"Unknown environment type: {env_type}") from None

    publishable_core = random_string(KEY_CORE_LENGTH)
    secret_core = random_string(KEY_CORE_LENGTH)
    while secret_core == publishable_core:
        secret_core = random_string(KEY_CORE_LENGTH)

    secret_key = f"sk_{mode}_{secret_core}"
    return EnvironmentKeys(
        publishable_key=f"pk_{mode}_{publishable_core}",
        secret_key=secret_key,
        secret_key_hash=hasher.hash(secret_key),
    )
