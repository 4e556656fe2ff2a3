"""Security headers middleware."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data:; "
    "frame-ancestors 'none'"
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Injects security headers and a cache policy into every response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY

        # Session-bearing responses must never be cached
        path = request.url.path
        if request.method != "GET" or path.startswith("/api/v1/auth/"):
            response.headers["Cache-Control"] = "no-store"
        elif path == "/health":
            response.headers["Cache-Control"] = "private, max-age=10"
        elif path.startswith("/api/v1/"):
            response.headers["Cache-Control"] = "private, no-cache"

        return response
