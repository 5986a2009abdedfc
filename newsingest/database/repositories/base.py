"""Shared plumbing for the repositories.

Every repository call opens its own short-lived session through the injected
``DatabaseConnection``, falling back to the process-wide one. Writes that must
join a caller's transaction (article inserts during persistence) take an
explicit ``session`` argument instead.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from newsingest.database.connection import DatabaseConnection, get_database_connection
from newsingest.database.models.base import Base

T = TypeVar('T', bound=Base)

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    model_class: Type[T] = None

    def __init__(self, db: Optional[DatabaseConnection] = None):
        if self.model_class is None:
            raise ValueError(f"{type(self).__name__} must set model_class")
        self._db = db

    @property
    def db(self) -> DatabaseConnection:
        return self._db or get_database_connection()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.db.get_session() as session:
            yield session

    async def get_by_id(self, id: UUID) -> Optional[T]:
        async with self.session() as session:
            return await session.get(self.model_class, id)

    async def get_by_field(self, field_name: str, value: Any) -> Optional[T]:
        column = getattr(self.model_class, field_name)
        async with self.session() as session:
            return await session.scalar(select(self.model_class).where(column == value))

    async def create(self, data: Dict[str, Any]) -> T:
        """Insert one row in its own transaction and return it refreshed.

        Raises:
            SQLAlchemyError: If the insert violates a constraint
        """
        instance = self.model_class(**data)
        async with self.session() as session:
            try:
                async with session.begin():
                    session.add(instance)
                    await session.flush()
                    await session.refresh(instance)
            except Exception as e:
                logger.error(
                    f"Failed to create {self.model_class.__name__}",
                    extra={"model": self.model_class.__name__, "error": str(e), "error_type": type(e).__name__}
                )
                raise
        return instance
