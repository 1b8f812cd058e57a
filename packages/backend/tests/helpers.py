"""Shared test helpers (importable from test modules, unlike conftest)."""

SESSION_COOKIE = "auth-kit.session"
STRONG_PASSWORD = "Sup3r-secret!"


class RecordingSender:
    """MagicLinkSender that keeps every message instead of emailing it."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, *, email: str, url: str, project_id: str) -> None:
        self.sent.append({"email": email, "url": url, "project_id": project_id})

    @property
    def last_token(self) -> str:
        return self.sent[-1]["url"].split("token=", 1)[1]


class FailingSender:
    """MagicLinkSender whose mail provider is down."""

    async def send(self, *, email: str, url: str, project_id: str) -> None:
        raise ConnectionError("smtp unavailable")


def session_cookie(response) -> str:
    """Pull the platform session token out of a Set-Cookie header."""
    header = response.headers["set-cookie"]
    name, _, rest = header.partition("=")
    assert name == SESSION_COOKIE
    return rest.split(";", 1)[0]


def cookie_headers(token: str) -> dict:
    return {"Cookie": f"{SESSION_COOKIE}={token}"}
