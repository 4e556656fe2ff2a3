"""FastAPI dependency injection providers."""

from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth.session import SessionClaims
from .config import ReviewCenterConfig, get_config
from .database import get_session, get_session_factory
from .utils.logging import get_logger

_dep_logger = get_logger("dependencies")

security_scheme = HTTPBearer(auto_error=False)

_config_instance: ReviewCenterConfig | None = None
_password_hasher = None
_user_repository = None
_authenticator = None
_session_issuer = None
_incident_manager = None
_markdown_exporter = None
_login_limiter = None


def get_app_config() -> ReviewCenterConfig:
    """Get the application config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = get_config()
    return _config_instance


async def get_db(config: ReviewCenterConfig = Depends(get_app_config)):
    """Get an async database session."""
    async for session in get_session(config):
        yield session


# --- Auth singletons ---

def get_password_hasher():
    """Get the Password Hasher singleton."""
    global _password_hasher
    if _password_hasher is None:
        from .auth.passwords import PasswordHasher
        _password_hasher = PasswordHasher(iterations=get_app_config().password_iterations)
    return _password_hasher


def get_user_repository():
    """Get the User Repository singleton."""
    global _user_repository
    if _user_repository is None:
        from .auth.repository import SqlUserRepository
        _user_repository = SqlUserRepository(get_session_factory(get_app_config()))
    return _user_repository


def get_authenticator():
    """Get the Authenticator singleton."""
    global _authenticator
    if _authenticator is None:
        from .auth.authenticator import Authenticator
        _authenticator = Authenticator(get_user_repository(), get_password_hasher())
    return _authenticator


def get_session_issuer():
    """Get the Session Issuer singleton."""
    global _session_issuer
    if _session_issuer is None:
        from .auth.session import SessionIssuer
        config = get_app_config()
        _session_issuer = SessionIssuer(
            secret_key=config.secret_key,
            algorithm=config.jwt_algorithm,
            lifetime=timedelta(minutes=config.session_lifetime_minutes),
            cookie_name=config.session_cookie_name,
        )
    return _session_issuer


def get_login_limiter():
    """Get the login Rate Limiter singleton."""
    global _login_limiter
    if _login_limiter is None:
        from .utils.rate_limiter import RateLimiter
        config = get_app_config()
        _login_limiter = RateLimiter(
            max_attempts=config.login_max_attempts,
            window_seconds=config.login_window_seconds,
        )
    return _login_limiter


async def get_current_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> SessionClaims:
    """Read the session cookie (or a Bearer token) and return its claims."""
    issuer = get_session_issuer()

    # httpOnly cookie first, then Bearer header
    raw_token = request.cookies.get(issuer.cookie_name)
    if not raw_token and credentials:
        raw_token = credentials.credentials

    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = issuer.read(raw_token)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.session = claims
    return claims


# --- Engine singletons ---

def get_incident_manager():
    """Get the Incident Manager singleton."""
    global _incident_manager
    if _incident_manager is None:
        from .engine.incident_manager import IncidentManager
        _incident_manager = IncidentManager(
            db_session_factory=get_session_factory(get_app_config()),
        )
    return _incident_manager


def get_markdown_exporter():
    """Get the Markdown Exporter singleton."""
    global _markdown_exporter
    if _markdown_exporter is None:
        from .export.exporter import MarkdownExporter
        _markdown_exporter = MarkdownExporter(get_incident_manager())
    return _markdown_exporter


def reset_singletons() -> None:
    """Drop every cached provider so the next call rebuilds it from current config."""
    global _config_instance, _password_hasher, _user_repository, _authenticator
    global _session_issuer, _incident_manager, _markdown_exporter, _login_limiter
    _config_instance = None
    _password_hasher = None
    _user_repository = None
    _authenticator = None
    _session_issuer = None
    _incident_manager = None
    _markdown_exporter = None
    _login_limiter = None
