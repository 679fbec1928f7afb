"""Session middleware.

Every request outside ``PUBLIC_PATHS`` must carry a session (see
``auth.session_from_request``); the parsed ``Session`` ends up on
``request.state.session``. Cookie sessions also go through a double-submit
CSRF check on writes: the ``x-csrf-token`` header must echo the readable
``wt_csrf`` cookie. Bearer tokens are not sent by browsers on their own, so
they skip it.
"""

from __future__ import annotations

import secrets

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .auth import issue_token, session_from_request, set_session_cookie
from .errors import Unauthorized

PUBLIC_PATHS = frozenset(
    {
        "/health",
        "/auth/login",
        "/auth/register",
        "/auth/logout",
        "/docs",
        "/openapi.json",
    }
)

CSRF_COOKIE = "wt_csrf"
CSRF_HEADER = "x-csrf-token"
_READ_ONLY_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def _csrf_ok(request: Request) -> bool:
    cookie = request.cookies.get(CSRF_COOKIE, "")
    header = request.headers.get(CSRF_HEADER, "")
    return bool(cookie) and secrets.compare_digest(cookie.encode(), header.encode())


def _give_csrf_cookie(request: Request, response: Response) -> None:
    if request.cookies.get(CSRF_COOKIE):
        return
    # Readable from JS, which echoes it back in the header.
    response.set_cookie(key=CSRF_COOKIE, value=secrets.token_hex(32), httponly=False, samesite="lax", path="/")


def _reject(exc: Unauthorized) -> JSONResponse:
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


class AuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in PUBLIC_PATHS:
            response = await call_next(request)
            _give_csrf_cookie(request, response)
            return response

        try:
            session = session_from_request(request)
        except Unauthorized as e:
            return _reject(e)
        if session is None:
            return _reject(Unauthorized("Not authenticated"))

        if session.from_cookie and request.method not in _READ_ONLY_METHODS and not _csrf_ok(request):
            return JSONResponse({"detail": "CSRF token mismatch"}, status_code=403)

        request.state.session = session
        response = await call_next(request)

        if session.from_cookie:
            _give_csrf_cookie(request, response)
            if session.needs_refresh():
                set_session_cookie(response, issue_token(session.user_id))
        return response
