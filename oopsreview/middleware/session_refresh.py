"""Sliding session expiry.

When a request arrives with a valid session cookie that is past half its
lifetime, the response carries a re-issued cookie (and the CSRF token bound
to it), so an active user stays signed in while an idle one expires.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..dependencies import get_app_config, get_session_issuer
from ..utils.logging import get_logger
from .csrf import CSRF_HEADER, csrf_token_for

logger = get_logger("middleware.session_refresh")

SKIP_PATHS = {"/api/v1/auth/login", "/api/v1/auth/logout"}


class SessionRefreshMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        if request.url.path in SKIP_PATHS or response.status_code == 401:
            return response

        issuer = get_session_issuer()
        claims = issuer.read(request.cookies.get(issuer.cookie_name))
        if claims is None or not issuer.needs_refresh(claims):
            return response

        config = get_app_config()
        token = issuer.refresh(claims)
        issuer.set_cookie(response, token, secure=request.url.scheme == "https")
        response.headers[CSRF_HEADER] = csrf_token_for(token, config.secret_key)
        logger.debug("session_refreshed", user_id=claims.user_id)
        return response
