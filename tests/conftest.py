"""
Shared test fixtures.

Database fixtures connect to a real PostgreSQL test database configured
through POSTGRES_* environment variables. Tests that use them are
skipped when the database is unreachable.
"""

import os

import pytest
import pytest_asyncio

from ghmirror.core.storage.base import DatabaseConfig
from ghmirror.core.storage.postgres import Base, Database

# Use test database to avoid polluting production data
TEST_DB = "ghmirror_test"


@pytest.fixture(scope="module")
def database_config() -> DatabaseConfig:
    """Database configuration for tests."""
    return DatabaseConfig(
        host=os.getenv("POSTGRES_HOST", "localhost"),
        port=int(os.getenv("POSTGRES_PORT", "5432")),
        database=os.getenv("POSTGRES_TEST_DB", TEST_DB),
        user=os.getenv("POSTGRES_USER", "ghmirror"),
        password=os.getenv("POSTGRES_PASSWORD", "ghmirror"),
        pool_size=2,
        pool_max_overflow=2,
        echo=False,
    )


@pytest_asyncio.fixture
async def database(database_config: DatabaseConfig) -> Database:
    """
    Provide a connected database instance with tables created.

    Creates tables at setup and drops them at teardown.
    """
    db = Database(database_config)
    await db.connect()

    try:
        await db.create_tables()
    except Exception as e:
        await db.disconnect()
        pytest.skip(f"PostgreSQL not available: {e}")

    yield db

    await db.drop_tables()
    await db.disconnect()


@pytest_asyncio.fixture
async def clean_database(database: Database) -> Database:
    """Provide a database with every table emptied."""
    async with database.session() as session:
        for table in reversed(Base.metadata.sorted_tables):
            await session.execute(table.delete())

    yield database
