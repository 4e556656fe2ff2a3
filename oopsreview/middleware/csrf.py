"""CSRF protection middleware.

Validates the X-CSRF-Token header on state-changing requests that carry the
session cookie. The token is a SHA-256 digest of the session token and the
secret key; it is returned at login and re-sent whenever the session slides.
Requests without the cookie (Bearer clients, login itself) are not checked.
"""

import hashlib
import hmac

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..dependencies import get_app_config
from ..utils.logging import get_logger

logger = get_logger("middleware.csrf")

CSRF_HEADER = "X-CSRF-Token"

CSRF_EXEMPT_PATHS = {
    "/api/v1/auth/login",
    "/health",
}

CSRF_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def csrf_token_for(session_token: str, secret_key: str) -> str:
    """Derive the CSRF token bound to a session token."""
    return hashlib.sha256(f"{session_token}:{secret_key}:csrf".encode()).hexdigest()


class CSRFMiddleware(BaseHTTPMiddleware):
    """Rejects cookie-authenticated writes that lack a matching CSRF token."""

    async def dispatch(self, request: Request, call_next):
        if request.method not in CSRF_METHODS:
            return await call_next(request)

        if request.url.path in CSRF_EXEMPT_PATHS:
            return await call_next(request)

        config = get_app_config()
        session_cookie = request.cookies.get(config.session_cookie_name)
        if not session_cookie:
            return await call_next(request)

        csrf_token = request.headers.get(CSRF_HEADER)
        if not csrf_token:
            logger.warning("csrf_missing", path=request.url.path)
            return JSONResponse(status_code=403, content={"detail": "CSRF token missing"})

        expected = csrf_token_for(session_cookie, config.secret_key)
        if not hmac.compare_digest(csrf_token, expected):
            logger.warning("csrf_invalid", path=request.url.path)
            return JSONResponse(status_code=403, content={"detail": "CSRF token invalid"})

        return await call_next(request)
