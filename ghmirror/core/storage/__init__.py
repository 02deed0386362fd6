"""
Storage module.

Provides access to the PostgreSQL mirror store.

Usage:
    from ghmirror.core.storage import get_db

    db = await get_db()
    async with db.session() as session:
        result = await session.execute(query)
"""

from ghmirror.core.storage.base import BaseDatabase, DatabaseConfig
from ghmirror.core.storage.exceptions import (
    ConfigurationError,
    ConnectionError,
    NotFoundError,
    StorageError,
)
from ghmirror.core.storage.postgres import (
    Base,
    Database,
    close_db,
    get_db,
    load_database_config,
)

__all__ = [
    # Base classes
    "BaseDatabase",
    "DatabaseConfig",
    # Exceptions
    "StorageError",
    "ConnectionError",
    "NotFoundError",
    "ConfigurationError",
    # PostgreSQL
    "Database",
    "Base",
    "get_db",
    "close_db",
    "load_database_config",
]
