"""User lookups for authentication."""

from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from ..models.user import User


class UserRepository(Protocol):
    """Read access to users, each returned with its role loaded."""

    async def get_by_username(self, username: str) -> Optional[User]: ...

    async def get_by_id(self, user_id: int) -> Optional[User]: ...


class SqlUserRepository:
    """UserRepository backed by an async SQLAlchemy session factory."""

    def __init__(self, db_session_factory) -> None:
        self._db_session_factory = db_session_factory

    async def get_by_username(self, username: str) -> Optional[User]:
        async with self._db_session_factory() as session:
            return (await session.execute(
                select(User).options(selectinload(User.role)).where(User.username == username)
            )).scalar_one_or_none()

    async def get_by_id(self, user_id: int) -> Optional[User]:
        async with self._db_session_factory() as session:
            return (await session.execute(
                select(User).options(selectinload(User.role)).where(User.id == user_id)
            )).scalar_one_or_none()

    async def record_login(self, user_id: int) -> None:
        """Stamp the user's last successful login."""
        async with self._db_session_factory() as session:
            async with session.begin():
                user = await session.get(User, user_id)
                if user is not None:
                    user.last_login = datetime.now(timezone.utc)
