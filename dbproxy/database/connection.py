"""Database connection handle.

Provides the single live database connection used by the supervisor: a
SQLAlchemy async connection over asyncpg, without pooling, executing raw
statements in autocommit mode.
"""

import asyncio
import errno
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from dbproxy.exceptions import ConnectFailureError, QueryExecutionError

from .config import ConnectionConfig

logger = logging.getLogger(__name__)

LIVENESS_QUERY = "SELECT 1"

# Errors raised by SQLAlchemy, the driver, or the socket underneath it
DRIVER_ERRORS: tuple[type[BaseException], ...] = (
    SQLAlchemyError,
    OSError,
    TimeoutError,
)


@dataclass
class FieldDescription:
    """Column metadata of a query result."""

    name: str
    data_type: int | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"name": self.name, "dataType": self.data_type}


@dataclass
class QueryResult:
    """Rows and metadata produced by a single statement."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    fields: list[FieldDescription] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "rows": self.rows,
            "rowCount": self.row_count,
            "fields": [f.to_dict() for f in self.fields],
        }

    @classmethod
    def from_cursor_result(cls, result: CursorResult[Any]) -> "QueryResult":
        """Build a query result from a SQLAlchemy cursor result."""
        if not result.returns_rows:
            return cls(row_count=max(result.rowcount, 0))

        # The cursor is released once rows are consumed
        cursor = result.cursor
        description = cursor.description if cursor is not None else None
        if description:
            fields = [FieldDescription(name=d[0], data_type=d[1]) for d in description]
        else:
            fields = [FieldDescription(name=k, data_type=None) for k in result.keys()]

        rows = [dict(row) for row in result.mappings().all()]
        return cls(rows=rows, row_count=len(rows), fields=fields)


def _driver_error(error: BaseException) -> BaseException:
    """Unwrap SQLAlchemy's wrapper to the driver's own exception."""
    if isinstance(error, DBAPIError) and error.orig is not None:
        orig = error.orig
        # The asyncpg adapter chains the native asyncpg exception
        return orig.__cause__ or orig
    return error


def error_code(error: BaseException) -> str | None:
    """Get the SQLSTATE or errno name describing a driver error."""
    candidates = [error, _driver_error(error)]
    if isinstance(error, DBAPIError) and error.orig is not None:
        candidates.append(error.orig)

    for candidate in candidates:
        sqlstate = getattr(candidate, "sqlstate", None) or getattr(
            candidate, "pgcode", None
        )
        if sqlstate:
            return str(sqlstate)
        if isinstance(candidate, OSError) and candidate.errno:
            return errno.errorcode.get(candidate.errno)

    if isinstance(_driver_error(error), TimeoutError):
        return "ETIMEDOUT"
    return None


def error_message(error: BaseException) -> str:
    """Get the driver's message for an error, without SQLAlchemy decoration."""
    message = str(_driver_error(error))
    return message or type(error).__name__


def is_connection_lost(error: BaseException) -> bool:
    """Check whether the driver reported the connection itself as unusable."""
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(_driver_error(error), ConnectionError)


def translate_error(error: BaseException) -> QueryExecutionError:
    """Translate a driver error into a query execution error."""
    return QueryExecutionError(
        error_message(error),
        code=error_code(error),
        connection_lost=is_connection_lost(error),
        details={"error_type": type(_driver_error(error)).__name__},
    )


class DatabaseConnection:
    """A single open database connection.

    Statements run in autocommit mode with positional ``$n`` parameters,
    exactly as the client sent them.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        connection: AsyncConnection,
        config: ConnectionConfig,
    ):
        self.engine = engine
        self.connection = connection
        self.config = config

    @classmethod
    async def open(cls, config: ConnectionConfig) -> "DatabaseConnection":
        """Open a new connection.

        Args:
            config: Connection parameters for this attempt

        Returns:
            DatabaseConnection: The open connection

        Raises:
            ConnectFailureError: If the connection cannot be established
        """
        engine = create_async_engine(
            config.get_sqlalchemy_url(),
            poolclass=NullPool,
            isolation_level="AUTOCOMMIT",
            connect_args=config.get_connect_args(),
        )

        try:
            connection = await engine.connect()
        except DRIVER_ERRORS as e:
            await engine.dispose()
            raise ConnectFailureError(
                error_message(e),
                details={"code": error_code(e), **config.describe()},
            ) from e

        logger.debug("New database connection established", extra=config.describe())
        return cls(engine, connection, config)

    @property
    def closed(self) -> bool:
        """Check whether the connection has been closed."""
        return self.connection.closed

    async def execute(
        self, sql: str, args: Sequence[Any] | None = None
    ) -> QueryResult:
        """Execute a raw statement.

        Args:
            sql: Statement text with ``$n`` placeholders
            args: Positional parameter values

        Returns:
            QueryResult: Rows, row count and column metadata

        Raises:
            QueryExecutionError: If the statement fails
        """
        parameters = tuple(args) if args else None
        try:
            result = await self.connection.exec_driver_sql(sql, parameters)
            return QueryResult.from_cursor_result(result)
        except DRIVER_ERRORS as e:
            raise translate_error(e) from e

    async def ping(self, timeout: float) -> None:
        """Run the liveness query.

        Args:
            timeout: Maximum time to wait for the reply in seconds

        Raises:
            QueryExecutionError: If the query fails or times out
        """
        try:
            await asyncio.wait_for(
                self.connection.exec_driver_sql(LIVENESS_QUERY), timeout=timeout
            )
        except TimeoutError as e:
            raise QueryExecutionError(
                f"Liveness probe timed out after {timeout}s", code="ETIMEDOUT"
            ) from e
        except DRIVER_ERRORS as e:
            raise translate_error(e) from e

    async def close(self) -> None:
        """Close the connection and dispose of its engine."""
        try:
            await self.connection.close()
        finally:
            await self.engine.dispose()
        logger.debug("Database connection closed")
