"""Database exceptions."""


class DatabaseError(Exception):
    """Base class for storage errors."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when schema files are invalid or migrations fail."""
    pass
