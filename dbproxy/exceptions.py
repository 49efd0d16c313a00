"""Database proxy exceptions.

This module defines the exceptions raised while connecting to the database,
executing proxied queries and validating API requests.
"""

from typing import Any


class DatabaseProxyError(Exception):
    """Base exception for all database proxy errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize database proxy error.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConnectFailureError(DatabaseProxyError):
    """Raised when a connection attempt to the database fails."""

    pass


class NotConnectedError(DatabaseProxyError):
    """Raised when an operation needs a live connection and there is none."""

    pass


class ConnectionBusyError(DatabaseProxyError):
    """Raised when the connection stays occupied past a probe's timeout."""

    pass


class InvalidRequestError(DatabaseProxyError):
    """Raised when an API request is malformed."""

    pass


class ServiceUnavailableError(DatabaseProxyError):
    """Raised when the database is not connected at request time."""

    pass


class QueryExecutionError(DatabaseProxyError):
    """Raised when a statement fails on a live connection."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        detail: str | None = None,
        connection_lost: bool = False,
        details: dict[str, Any] | None = None,
    ):
        """Initialize query execution error.

        Args:
            message: Error message reported by the database or driver
            code: SQLSTATE or errno name identifying the failure
            detail: Optional diagnostic detail (traceback in development)
            connection_lost: Whether the driver reported the connection unusable
            details: Optional dictionary with additional error details
        """
        super().__init__(message, details)
        self.code = code
        self.detail = detail
        self.connection_lost = connection_lost


class ConnectionFatalError(QueryExecutionError):
    """Raised when a query failure also means the connection is unusable."""

    @classmethod
    def from_error(cls, error: QueryExecutionError) -> "ConnectionFatalError":
        """Build a fatal error carrying the original error's fields."""
        return cls(
            error.message,
            code=error.code,
            detail=error.detail,
            connection_lost=True,
            details=error.details,
        )
