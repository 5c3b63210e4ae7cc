"""Auth cookie handling."""

from datetime import timedelta
from typing import Literal

from fastapi import Request, Response

SameSite = Literal["strict", "lax", "none"]


def parse_same_site(value: str) -> SameSite:
    """Map a configured SameSite string to a cookie mode; unknown values mean strict."""
    normalized = value.strip().lower()
    if normalized == "lax":
        return "lax"
    if normalized == "none":
        return "none"
    return "strict"


class CookieService:
    """Sets, reads and clears the session cookie.

    Max-age equals the token TTL so the browser drops the cookie when the
    token inside it expires.
    """

    def __init__(
        self,
        name: str,
        ttl: timedelta,
        secure: bool = True,
        http_only: bool = True,
        same_site: str = "strict",
    ):
        self.name = name
        self.max_age = int(ttl.total_seconds())
        self.secure = secure
        self.http_only = http_only
        self.same_site = parse_same_site(same_site)

    def set_auth_cookie(self, response: Response, token: str) -> None:
        response.set_cookie(
            key=self.name,
            value=token,
            max_age=self.max_age,
            path="/",
            secure=self.secure,
            httponly=self.http_only,
            samesite=self.same_site,
        )

    def get_auth_cookie(self, request: Request) -> str | None:
        return request.cookies.get(self.name)

    def clear_auth_cookie(self, response: Response) -> None:
        """Overwrite the cookie with an empty, already-expired value."""
        response.set_cookie(
            key=self.name,
            value="",
            max_age=0,
            expires=0,
            path="/",
            secure=self.secure,
            httponly=self.http_only,
            samesite=self.same_site,
        )
