"""Stateless signed-token sessions carried in an HTTP-only cookie.

The whole session lives in a JWT signed with the configured secret, so no
process-local session table exists and any instance sharing the secret can
read it. Expiry slides: once a session is past half its lifetime the next
request is answered with a freshly issued cookie.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import jwt
from jwt.exceptions import PyJWTError
from starlette.responses import Response

from ..utils.logging import get_logger

if TYPE_CHECKING:
    from .authenticator import AuthResult

logger = get_logger("auth.session")


@dataclass(frozen=True)
class SessionClaims:
    """The attested facts about a signed-in user."""

    user_id: int
    role: Optional[str]
    username: str
    display_name: str
    issued_at: datetime
    expires_at: datetime

    def to_public_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "username": self.username,
            "display_name": self.display_name,
            "expires_at": self.expires_at.isoformat(),
        }


class SessionIssuer:
    """Mints, reads and refreshes session tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(hours=8),
        cookie_name: str = "oopsreview_session",
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.lifetime = lifetime
        self.cookie_name = cookie_name

    def issue(self, result: "AuthResult", now: Optional[datetime] = None) -> str:
        """Create a token for a successful authentication result."""
        if not result.success:
            raise ValueError("Cannot issue a session for a failed authentication")
        username = result.username or str(result.user_id)
        return self._encode(
            user_id=result.user_id,
            role=result.role_name,
            username=username,
            display_name=result.full_name or username,
            now=now,
        )

    def refresh(self, claims: SessionClaims, now: Optional[datetime] = None) -> str:
        """Re-issue a token carrying the same identity with a new expiry."""
        return self._encode(
            user_id=claims.user_id,
            role=claims.role,
            username=claims.username,
            display_name=claims.display_name,
            now=now,
        )

    def read(self, token: Optional[str]) -> Optional[SessionClaims]:
        """Decode and validate a token. Returns None when missing, tampered or expired."""
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
            return SessionClaims(
                user_id=int(payload["sub"]),
                role=payload.get("role") or None,
                username=payload.get("name") or payload["sub"],
                display_name=payload.get("display_name") or payload.get("name") or "User",
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (PyJWTError, KeyError, TypeError, ValueError) as e:
            logger.debug("session_token_rejected", error=str(e))
            return None

    def needs_refresh(self, claims: SessionClaims, now: Optional[datetime] = None) -> bool:
        """True once less than half of the lifetime remains."""
        now = now or datetime.now(timezone.utc)
        return claims.expires_at - now < self.lifetime / 2

    def set_cookie(self, response: Response, token: str, secure: bool) -> None:
        response.set_cookie(
            key=self.cookie_name,
            value=token,
            httponly=True,
            samesite="lax",
            secure=secure,
            max_age=int(self.lifetime.total_seconds()),
            path="/",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name, path="/", httponly=True, samesite="lax")

    def _encode(self, user_id: int, role: Optional[str], username: str, display_name: str,
                now: Optional[datetime]) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "role": role or "",
            "name": username,
            "display_name": display_name,
            "iat": int(now.timestamp()),
            "exp": int((now + self.lifetime).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
