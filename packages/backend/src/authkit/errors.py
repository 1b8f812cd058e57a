"""Error taxonomy shared by guards, services, and the HTTP layer.

Learn: Services never raise HTTPException. They raise one of these,
and a single exception handler in main.py turns it into a response.
That keeps business logic usable outside FastAPI (tests, scripts)
and guarantees every failure carries a stable machine-checkable code.

Unauthenticated failures always carry a generic message. "Key not
found" and "key wrong" must look identical to the caller.
"""


class AuthKitError(Exception):
    """Base class for errors surfaced to API callers."""

    code = "INTERNAL"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthenticatedError(AuthKitError):
    """Bad, missing, or expired credentials (401)."""

    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Invalid credentials"


class BadRequestError(AuthKitError):
    """Policy violation or a field required by the project's settings (400)."""

    code = "BAD_REQUEST"
    status_code = 400
    default_message = "Bad request"


class ConflictError(AuthKitError):
    """Duplicate user, username, or environment (409)."""

    code = "CONFLICT"
    status_code = 409
    default_message = "Conflict"


class NotFoundError(AuthKitError):
    """Unknown reference inside an authenticated context (404)."""

    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


# ─── Token layer ─────────────────────────────────────────


class TokenError(Exception):
    """Raised when token verification fails.

    Never returned to callers as-is: guards and flows translate it into
    an UnauthenticatedError with a generic message.
    """


class InvalidTokenError(TokenError):
    """Signature mismatch, expiry, or malformed structure."""


class TokenAudienceError(TokenError):
    """The token is valid but was issued for a different audience."""

    def __init__(self, expected: str, actual: str | None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected a {expected} token, got {actual!r}")
