from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request, Response

COOKIE_NAME = "access_token"


@dataclass(frozen=True)
class CookieSession:
    """Session token kept in an HTTP-only cookie.

    The only session capability in the app: routes read the token with
    ``get_session_token`` and login/logout go through ``start_session`` and
    ``clear_session``.
    """

    max_age: int = 60 * 60
    production: bool = False

    def get_session_token(self, request: Request) -> str | None:
        token = request.cookies.get(COOKIE_NAME)
        return token or None

    def start_session(self, request: Request, response: Response, token: str) -> None:
        response.set_cookie(
            COOKIE_NAME,
            token,
            max_age=self.max_age,
            path="/",
            httponly=True,
            secure=self._secure(request),
            samesite="lax",
        )

    def clear_session(self, request: Request, response: Response) -> None:
        response.set_cookie(
            COOKIE_NAME,
            "",
            max_age=0,
            path="/",
            httponly=True,
            secure=self._secure(request),
            samesite="lax",
        )

    def _secure(self, request: Request) -> bool:
        # plain http on localhost still needs the cookie outside production
        return self.production or request.url.scheme == "https"
