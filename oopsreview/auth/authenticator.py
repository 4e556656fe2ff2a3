"""Credential checks for login attempts.

The Authenticator is a pure boundary: it consults the user repository and the
password hasher and hands back an ``AuthResult``. It touches no cookies,
sessions or request objects, and it never raises to its caller; every
failure, including unexpected faults, is returned as data. Cancellation is
the exception: ``asyncio.CancelledError`` is not an ``Exception`` and
propagates unchanged.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models.user import User
from ..utils.logging import get_logger
from .passwords import InvalidPasswordInput, PasswordHasher
from .repository import UserRepository

logger = get_logger("auth.authenticator")

GENERIC_CREDENTIALS_MESSAGE = "Invalid credentials"


class AuthFailure(str, Enum):
    """Why a login attempt failed."""

    CREDENTIALS_REQUIRED = "credentials_required"
    USER_NOT_FOUND = "user_not_found"
    USER_INACTIVE = "user_inactive"
    ROLE_NOT_ASSIGNED = "role_not_assigned"
    INVALID_CREDENTIALS = "invalid_credentials"
    INTERNAL_ERROR = "internal_error"

    @property
    def message(self) -> str:
        """User-facing text. Unknown user, missing role and wrong password read the same."""
        return _FAILURE_MESSAGES[self]


_FAILURE_MESSAGES = {
    AuthFailure.CREDENTIALS_REQUIRED: "Username and password are required",
    AuthFailure.USER_NOT_FOUND: GENERIC_CREDENTIALS_MESSAGE,
    AuthFailure.USER_INACTIVE: "User is not active",
    AuthFailure.ROLE_NOT_ASSIGNED: GENERIC_CREDENTIALS_MESSAGE,
    AuthFailure.INVALID_CREDENTIALS: GENERIC_CREDENTIALS_MESSAGE,
    AuthFailure.INTERNAL_ERROR: "An error occurred during authentication",
}


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an authentication attempt."""

    success: bool
    failure: Optional[AuthFailure] = None
    error_message: Optional[str] = None
    user_id: int = 0
    role_name: Optional[str] = None
    is_active: bool = False
    username: Optional[str] = None
    full_name: Optional[str] = None

    @classmethod
    def failed(cls, failure: AuthFailure) -> "AuthResult":
        return cls(success=False, failure=failure, error_message=failure.message)

    @classmethod
    def succeeded(
        cls,
        user_id: int,
        role_name: str,
        is_active: bool,
        username: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> "AuthResult":
        return cls(
            success=True,
            user_id=user_id,
            role_name=role_name,
            is_active=is_active,
            username=username,
            full_name=full_name,
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "error_message": self.error_message,
            "user_id": self.user_id,
            "role_name": self.role_name,
            "is_active": self.is_active,
            "username": self.username,
            "full_name": self.full_name,
        }


class Authenticator:
    """Validates a login against stored credentials."""

    def __init__(self, users: UserRepository, hasher: PasswordHasher) -> None:
        self._users = users
        self._hasher = hasher

    async def authenticate(self, login: str, password: str) -> AuthResult:
        """Authenticate by username, or by numeric user id when no username matches."""
        if not login or not login.strip() or not password or not password.strip():
            return AuthResult.failed(AuthFailure.CREDENTIALS_REQUIRED)

        try:
            result = await self._authenticate(login, password)
        except Exception as e:
            logger.error("authentication_error", error_type=type(e).__name__, exc_info=True)
            return AuthResult.failed(AuthFailure.INTERNAL_ERROR)

        if result.success:
            logger.info("login_succeeded", user_id=result.user_id, role=result.role_name)
        else:
            logger.info("login_failed", reason=result.failure.value)
        return result

    async def _authenticate(self, login: str, password: str) -> AuthResult:
        user = await self._find_user(login)
        if user is None:
            return AuthResult.failed(AuthFailure.USER_NOT_FOUND)

        if user.is_active is not True:
            return AuthResult.failed(AuthFailure.USER_INACTIVE)

        if user.role is None:
            return AuthResult.failed(AuthFailure.ROLE_NOT_ASSIGNED)

        if not await self._password_matches(user, password):
            return AuthResult.failed(AuthFailure.INVALID_CREDENTIALS)

        return AuthResult.succeeded(
            user_id=user.id,
            role_name=user.role.name,
            is_active=True,
            username=user.username,
            full_name=user.full_name,
        )

    async def _find_user(self, login: str) -> Optional[User]:
        user = await self._users.get_by_username(login)
        if user is None:
            user_id = _parse_user_id(login)
            if user_id is not None:
                user = await self._users.get_by_id(user_id)
        return user

    async def _password_matches(self, user: User, password: str) -> bool:
        # Key derivation is CPU-bound; keep it off the event loop.
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, self._hasher.verify_password, password, user.salt, user.password_hash,
            )
        except InvalidPasswordInput:
            logger.warning("stored_credentials_unusable", user_id=user.id)
            return False


def _parse_user_id(login: str) -> Optional[int]:
    try:
        return int(login.strip())
    except ValueError:
        return None
