"""Project-wide custom exceptions."""

from __future__ import annotations


class SqlvError(Exception):
    """Base exception for the SQLite viewer CLI suite."""


class ConfigurationError(SqlvError):
    """Raised when configuration loading or validation fails."""


class ValidationError(SqlvError):
    """Raised when a filter, browse request or input value is malformed."""


class InvalidIdentifierError(SqlvError):
    """Raised when a mutation has no usable row identifier."""


class CapacityError(SqlvError):
    """Raised when a database image is too large for the current configuration."""


class PersistenceError(SqlvError):
    """Raised when the durable copy of a database could not be written."""


class DatabaseError(SqlvError):
    """Raised for database-related issues."""


class SchemaError(DatabaseError):
    """Raised when a table or column does not exist."""


class EngineError(DatabaseError):
    """Raised when SQLite rejects a statement."""


class DatabaseNotFoundError(DatabaseError):
    """Raised when a database id is unknown or no database is selected."""
