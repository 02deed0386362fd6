"""
Storage exceptions.

Raised by the database layer and by services when configuration or
stored records are missing.
"""


class StorageError(Exception):
    """Base exception for all storage errors."""

    pass


class ConnectionError(StorageError):
    """Cannot connect to PostgreSQL, or used before connect()."""

    pass


class NotFoundError(StorageError):
    """Requested record or file does not exist."""

    pass


class ConfigurationError(StorageError):
    """Missing or invalid configuration (database, token, organization)."""

    pass
