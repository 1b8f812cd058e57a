"""Credential hashing.

Learn: Uses bcrypt for both user passwords and environment secret
keys, with one algorithm and one cost factor for both. bcrypt
salts automatically and produces hashes starting with "$2b$".
The work factor (rounds=12) takes ~250ms per hash on modern hardware,
which is the point: brute-forcing a leaked table stays expensive.
"""

import bcrypt

# bcrypt only looks at the first 72 bytes of its input.
_MAX_BYTES = 72


class CredentialHasher:
    """One-way salted hashing with a fixed work factor."""

    def __init__(self, rounds: int = 12):
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds

    def hash(self, secret: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(_encode(secret), salt).decode("utf-8")

    def verify(self, secret: str, digest: str) -> bool:
        """Check a secret against a stored digest. Malformed digests never match."""
        if not secret or not digest:
            return False
        try:
            return bcrypt.checkpw(_encode(secret), digest.encode("utf-8"))
        except (ValueError, TypeError):
            return False


def _encode(secret: str) -> bytes:
    return secret.encode("utf-8")[:_MAX_BYTES]
