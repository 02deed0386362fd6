"""
PostgreSQL mirror store.

One async engine per process. Every unit of work runs in a
``Database.session()`` block, which is also the transaction boundary:
the upserts of one sync page, one identity migration or one status
automation pass commit together or not at all.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ghmirror.core.config.loader import get_config
from ghmirror.core.storage.base import BaseDatabase, DatabaseConfig
from ghmirror.core.storage.exceptions import ConfigurationError, ConnectionError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all mirror models."""

    pass


class Database(BaseDatabase):
    """
    Async SQLAlchemy engine plus a transactional session factory.

    Usage:
        db = Database(config)
        await db.connect()

        async with db.session() as session:
            await session.execute(stmt)

        await db.disconnect()
    """

    def __init__(self, config: DatabaseConfig):
        super().__init__(config)
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def connect(self) -> None:
        """Create the engine and session factory. No-op when connected."""
        if self._engine is not None:
            return

        try:
            self._engine = create_async_engine(
                self.config.async_url,
                pool_size=self.config.pool_size,
                max_overflow=self.config.pool_max_overflow,
                pool_pre_ping=True,
                echo=self.config.echo,
                connect_args={
                    "server_settings": {"application_name": self.config.application_name}
                },
            )
            self._session_factory = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
            logger.info(
                f"Connected to PostgreSQL at {self.config.host}:{self.config.port}"
                f"/{self.config.database}"
            )
        except Exception as e:
            raise ConnectionError(f"Failed to connect to PostgreSQL: {e}") from e

    async def disconnect(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Disconnected from PostgreSQL")

    async def health_check(self) -> bool:
        """Run ``SELECT 1``; False when the server cannot be reached."""
        if self._engine is None:
            return False

        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"PostgreSQL health check failed: {e}")
            return False

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional session scope.

        Commits when the block exits normally and rolls back when it
        raises, so callers never commit by hand.

        Raises:
            ConnectionError: If connect() was not called.
        """
        if self._session_factory is None:
            raise ConnectionError("Database not connected. Call connect() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create every mirror table (tests and first-run setups)."""
        if self._engine is None:
            raise ConnectionError("Database not connected. Call connect() first.")

        import ghmirror.core.models  # noqa: F401

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created")

    async def drop_tables(self) -> None:
        """Drop every mirror table."""
        if self._engine is None:
            raise ConnectionError("Database not connected. Call connect() first.")

        import ghmirror.core.models  # noqa: F401

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            logger.info("Database tables dropped")


def load_database_config() -> DatabaseConfig:
    """
    Build a DatabaseConfig from the ``postgres`` config section.

    Raises:
        ConfigurationError: If the section is missing.
    """
    postgres_config = get_config().get("postgres", {})
    if not postgres_config:
        raise ConfigurationError("PostgreSQL configuration not found")

    defaults = DatabaseConfig()
    return DatabaseConfig(
        host=postgres_config.get("host", defaults.host),
        port=int(postgres_config.get("port", defaults.port)),
        database=postgres_config.get("database", defaults.database),
        user=postgres_config.get("user", defaults.user),
        password=postgres_config.get("password", defaults.password),
        pool_size=int(postgres_config.get("pool_size", defaults.pool_size)),
        pool_max_overflow=int(
            postgres_config.get("pool_max_overflow", defaults.pool_max_overflow)
        ),
        echo=bool(postgres_config.get("echo", defaults.echo)),
        application_name=postgres_config.get(
            "application_name", defaults.application_name
        ),
    )


# Process-wide instance shared by every service
_db_instance: Database | None = None


async def get_db() -> Database:
    """
    Get the process-wide database, connecting it on first use.

    Returns:
        Connected Database instance.
    """
    global _db_instance

    if _db_instance is None:
        _db_instance = Database(load_database_config())
        await _db_instance.connect()

    return _db_instance


async def close_db() -> None:
    """Dispose of the process-wide database, if one was opened."""
    global _db_instance

    if _db_instance is not None:
        await _db_instance.disconnect()
        _db_instance = None
