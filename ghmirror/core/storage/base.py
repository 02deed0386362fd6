"""
Storage interfaces.

The mirror talks to PostgreSQL only; the abstract base keeps services
independent of the engine wiring so tests can hand them any connected
implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote


@dataclass
class DatabaseConfig:
    """Connection settings for the mirror database."""

    host: str = "localhost"
    port: int = 5432
    database: str = "ghmirror"
    user: str = "ghmirror"
    password: str = "ghmirror"
    pool_size: int = 5
    pool_max_overflow: int = 10
    echo: bool = False
    application_name: str = "ghmirror"

    def _url(self, scheme: str) -> str:
        # Credentials are percent-encoded; both SQLAlchemy and libpq decode them
        user = quote(self.user, safe="")
        password = quote(self.password, safe="")
        return f"{scheme}://{user}:{password}@{self.host}:{self.port}/{self.database}"

    @property
    def async_url(self) -> str:
        """SQLAlchemy URL for the asyncpg driver."""
        return self._url("postgresql+asyncpg")

    @property
    def libpq_url(self) -> str:
        """Connection URL understood by libpq tools (pg_dump, pg_restore)."""
        return self._url("postgresql")


class BaseDatabase(ABC):
    """
    Abstract database handle.

    Usage:
        db = SomeDatabase(config)
        await db.connect()

        async with db.session() as session:
            result = await session.execute(query)

        await db.disconnect()
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the database."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close all database connections."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if database is reachable."""

    @abstractmethod
    def session(self) -> Any:
        """Return a transactional session context manager."""
