"""Per-project password and identity policy.

Learn: Rules run in a fixed order and stop at the first failure, so the
same bad password always produces the same message: length bounds first,
then uppercase, lowercase, digit, special character.
"""

import re
from typing import Optional, Protocol

from pydantic import EmailStr, TypeAdapter, ValidationError

SPECIAL_CHARACTERS = "!@#$%^&*"

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SPECIAL = re.compile(f"[{re.escape(SPECIAL_CHARACTERS)}]")
_EMAIL = TypeAdapter(EmailStr)


class PasswordPolicy(Protocol):
    """Anything shaped like ProjectSettings."""

    password_min_length: int
    password_max_length: int
    password_require_uppercase: bool
    password_require_lowercase: bool
    password_require_numbers: bool
    password_require_special: bool


def validate_password(candidate: str, policy: PasswordPolicy) -> Optional[str]:
    """Return the first violated rule's message, or None if the password passes."""
    if len(candidate) < policy.password_min_length:
        return (
            f"Password must be at least {policy.password_min_length} "
            "characters long"
        )
    if len(candidate) > policy.password_max_length:
        return (
            f"Password must be no more than {policy.password_max_length} "
            "characters"
        )
    if policy.password_require_uppercase and not _UPPER.search(candidate):
        return "Password must contain at least one uppercase letter"
    if policy.password_require_lowercase and not _LOWER.search(candidate):
        return "Password must contain at least one lowercase letter"
    if policy.password_require_numbers and not _DIGIT.search(candidate):
        return "Password must contain at least one number"
    if policy.password_require_special and not _SPECIAL.search(candidate):
        return "Password must contain at least one special character"
    return None


def is_email_identifier(identifier: str) -> bool:
    """Signin identifiers containing "@" are emails; anything else is a username."""
    return "@" in identifier


def normalize_email(candidate: str) -> Optional[str]:
    """Normalize an email the way request bodies do, or None if it is invalid.

    EmailStr lowercases the domain, so stored emails are compared against
    the normalized form rather than what the caller typed.
    """
    try:
        return _EMAIL.validate_python(candidate)
    except ValidationError:
        return None
