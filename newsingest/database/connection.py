"""Async engine and session management.

PostgreSQL (asyncpg) in deployment, SQLite (aiosqlite) in tests. Persistence
relies on SAVEPOINTs for per-article isolation inside a source transaction, so
SQLite engines get explicit BEGIN handling to make nested transactions work.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from newsingest.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def engine_options(url: str, settings: Settings) -> Dict[str, Any]:
    if not url.startswith("sqlite"):
        return {
            "echo": settings.DATABASE_ECHO,
            "pool_size": settings.DATABASE_POOL_SIZE,
            "max_overflow": settings.DATABASE_MAX_OVERFLOW,
            "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
            "pool_pre_ping": True,
        }
    # In-memory databases exist only inside a single connection
    return {
        "echo": settings.DATABASE_ECHO,
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool if ":memory:" in url else NullPool,
    }


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    # pysqlite's implicit transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class DatabaseConnection:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseConnection.setup() has not been called")
        return self._engine

    def setup(self) -> None:
        url = normalize_database_url(self.settings.DATABASE_URL)
        self._engine = create_async_engine(url, **engine_options(url, self.settings))
        if self._engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(self._engine)

        self._sessions = async_sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info(
            "Database engine ready",
            extra={"environment": self.settings.ENVIRONMENT, "dialect": self._engine.dialect.name}
        )

    async def create_all(self) -> None:
        """Create missing tables from the model metadata."""
        from newsingest.database.models import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database engine disposed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._sessions is None:
            raise RuntimeError("DatabaseConnection.setup() has not been called")
        async with self._sessions() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> bool:
        try:
            async with self.get_session() as session:
                return await session.scalar(text("SELECT 1")) == 1
        except Exception as e:
            logger.error("Database health check failed", extra={"error": str(e), "error_type": type(e).__name__})
            return False


_db_connection: DatabaseConnection | None = None


def get_database_connection(settings: Settings | None = None) -> DatabaseConnection:
    """Process-wide connection used by the API and repositories built without one."""
    global _db_connection
    if _db_connection is None:
        _db_connection = DatabaseConnection(settings or get_settings())
        _db_connection.setup()
    return _db_connection


async def close_database_connection() -> None:
    global _db_connection
    if _db_connection is not None:
        await _db_connection.close()
        _db_connection = None
