"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
Three audiences share one signing key, so every token carries a
"type" claim and verify() REQUIRES the caller to name the audience
it expects:

- platform: dashboard session (cookie), 7 days
- access:   tenant API calls, 15 minutes, scoped to one project
- refresh:  tenant token renewal, 7 days, scoped to one project

A refresh token presented where an access token is expected fails
with TokenAudienceError instead of quietly authenticating the caller.

Expiry is checked against an injectable clock (not PyJWT's wall clock)
so tests can pin the boundary: at exactly `exp` the token is expired.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from authkit.config import Settings
from authkit.errors import InvalidTokenError, TokenAudienceError

PLATFORM = "platform"
ACCESS = "access"
REFRESH = "refresh"

TOKEN_TYPES = (PLATFORM, ACCESS, REFRESH)
_PROJECT_SCOPED = (ACCESS, REFRESH)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenPayload:
    user_id: str
    type: str
    expires_at: datetime
    project_id: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenService:
    """Issues and verifies the three token kinds with one signing key."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        platform_ttl: timedelta = timedelta(days=7),
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
    ):
        if not secret:
            raise ValueError("TokenService requires a signing secret")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = {
            PLATFORM: platform_ttl,
            ACCESS: access_ttl,
            REFRESH: refresh_ttl,
        }
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            platform_ttl=timedelta(days=settings.platform_token_expire_days),
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
        )

    # ─── Issue ──────────────────────────────────────────

    def issue(
        self, token_type: str, user_id: str, project_id: Optional[str] = None
    ) -> str:
        if token_type not in TOKEN_TYPES:
            raise ValueError(f"Unknown token type: {token_type}")
        if token_type in _PROJECT_SCOPED and not project_id:
            raise ValueError(f"{token_type} tokens must be scoped to a project")

        now = self._clock()
        payload = {
            "sub": user_id,
            "type": token_type,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttl[token_type]).timestamp()),
        }
        if token_type in _PROJECT_SCOPED:
            payload["project_id"] = project_id
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def issue_platform_token(self, user_id: str) -> str:
        return self.issue(PLATFORM, user_id)

    def issue_tenant_pair(self, user_id: str, project_id: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue(ACCESS, user_id, project_id),
            refresh_token=self.issue(REFRESH, user_id, project_id),
        )

    # ─── Verify ─────────────────────────────────────────

    def verify(self, token: str, audience: str) -> TokenPayload:
        """Verify signature, expiry, structure, and audience.

        Raises InvalidTokenError or TokenAudienceError.
        """
        if audience not in TOKEN_TYPES:
            raise ValueError(f"Unknown token audience: {audience}")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "require": ["sub", "type", "exp"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from e

        exp = claims.get("exp")
        if not isinstance(exp, int):
            raise InvalidTokenError("Invalid token: malformed exp claim")
        if self._clock().timestamp() >= exp:
            raise InvalidTokenError("Token has expired")

        token_type = claims.get("type")
        if token_type != audience:
            raise TokenAudienceError(expected=audience, actual=token_type)

        user_id = claims.get("sub")
        project_id = claims.get("project_id")
        if not isinstance(user_id, str) or not user_id:
            raise InvalidTokenError("Invalid token: malformed subject")
        if audience in _PROJECT_SCOPED and not project_id:
            raise InvalidTokenError("Invalid token: missing project scope")

        return TokenPayload(
            user_id=user_id,
            type=token_type,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            project_id=project_id,
        )
