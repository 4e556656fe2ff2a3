"""Authentication routes — cookie sessions with failed-login throttling."""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field

from ...auth.authenticator import Authenticator
from ...auth.policies import granted_policies
from ...auth.session import SessionClaims, SessionIssuer
from ...config import ReviewCenterConfig
from ...dependencies import (
    get_app_config,
    get_authenticator,
    get_current_session,
    get_login_limiter,
    get_session_issuer,
    get_user_repository,
)
from ...middleware.csrf import csrf_token_for
from ...utils.logging import get_logger
from ...utils.rate_limiter import RateLimiter

logger = get_logger("api.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


def _get_client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """Extract client IP from request; X-Forwarded-For only behind a trusted proxy."""
    forwarded = request.headers.get("x-forwarded-for") if trust_forwarded_for else None
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class LoginRequest(BaseModel):
    login: str = Field(max_length=200, description="Username, or numeric user id")
    password: str = Field(max_length=1024)


class SessionResponse(BaseModel):
    user_id: int
    role: str | None
    username: str
    display_name: str
    expires_at: str
    policies: list[str]
    csrf_token: str | None = None


def _session_response(claims: SessionClaims, csrf_token: str | None = None) -> SessionResponse:
    return SessionResponse(
        **claims.to_public_dict(),
        policies=granted_policies(claims.role),
        csrf_token=csrf_token,
    )


@router.post("/login", response_model=SessionResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    config: ReviewCenterConfig = Depends(get_app_config),
    authenticator: Authenticator = Depends(get_authenticator),
    issuer: SessionIssuer = Depends(get_session_issuer),
    limiter: RateLimiter = Depends(get_login_limiter),
):
    """Check credentials and start a cookie session."""
    client_ip = _get_client_ip(request, config.trust_forwarded_for)

    if limiter.is_rate_limited(client_ip):
        logger.warning("login_throttled", ip=client_ip)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
            headers={"Retry-After": str(limiter.retry_after(client_ip))},
        )

    result = await authenticator.authenticate(body.login, body.password)
    if not result.success:
        limiter.record_attempt(client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.error_message,
        )

    limiter.reset(client_ip)
    await get_user_repository().record_login(result.user_id)

    token = issuer.issue(result)
    issuer.set_cookie(response, token, secure=request.url.scheme == "https")
    claims = issuer.read(token)
    return _session_response(claims, csrf_token=csrf_token_for(token, config.secret_key))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    """End the session by clearing its cookie."""
    claims = issuer.read(request.cookies.get(issuer.cookie_name))
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    issuer.clear_cookie(response)
    if claims is not None:
        logger.info("logout", user_id=claims.user_id)
    return response


@router.get("/me", response_model=SessionResponse)
async def me(session: SessionClaims = Depends(get_current_session)):
    """Who is signed in, and what they may do."""
    return _session_response(session)
