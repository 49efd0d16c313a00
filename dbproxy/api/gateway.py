"""Query gateway.

Forwards client SQL to the supervised connection, classifies failures, and
repairs the connection state when a failure means the connection is gone.
"""

import logging
import traceback
from collections.abc import Sequence
from typing import Any

from dbproxy.database.connection import QueryResult
from dbproxy.database.supervisor import ConnectionSupervisor
from dbproxy.exceptions import (
    ConnectionFatalError,
    InvalidRequestError,
    NotConnectedError,
    QueryExecutionError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)

# admin_shutdown, crash_shutdown, cannot_connect_now
FATAL_SQLSTATES = frozenset({"57P01", "57P02", "57P03"})
# Class 08: connection exception
FATAL_SQLSTATE_CLASSES = ("08",)
FATAL_ERRNO_CODES = frozenset({"ECONNRESET", "ECONNABORTED", "EPIPE"})


def is_connection_fatal(error: QueryExecutionError) -> bool:
    """Check whether a query failure means the connection is unusable."""
    if error.connection_lost:
        return True
    code = error.code or ""
    return (
        code in FATAL_SQLSTATES
        or code in FATAL_ERRNO_CODES
        or code.startswith(FATAL_SQLSTATE_CLASSES)
    )


def parameter_shape(args: Sequence[Any]) -> list[str]:
    """Describe query parameters by type only."""
    return [type(arg).__name__ for arg in args]


class QueryGateway:
    """Executes client queries against the supervised connection."""

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        log_values: bool = False,
        include_detail: bool = False,
    ):
        """Initialize query gateway.

        Args:
            supervisor: Supervisor owning the database connection
            log_values: Log raw parameter values along with their types
            include_detail: Attach tracebacks to execution errors
        """
        self.supervisor = supervisor
        self.log_values = log_values
        self.include_detail = include_detail

    async def execute(
        self, sql: str | None, args: Sequence[Any] | None = None
    ) -> QueryResult:
        """Execute a client statement.

        Args:
            sql: Statement text
            args: Positional parameter values

        Returns:
            QueryResult: Result of the statement

        Raises:
            InvalidRequestError: If the statement text is missing
            ServiceUnavailableError: If the database is not connected
            ConnectionFatalError: If the statement failed and the connection is gone
            QueryExecutionError: If the statement failed on a live connection
        """
        if not sql:
            raise InvalidRequestError("Query text is required")

        if not self.supervisor.is_connected():
            raise ServiceUnavailableError("Database not connected")

        args = list(args or [])
        self._log_statement(sql, args)

        try:
            result = await self.supervisor.query(sql, args)
        except NotConnectedError as e:
            raise ServiceUnavailableError("Database not connected") from e
        except QueryExecutionError as e:
            if await self._handle_failure(e):
                raise ConnectionFatalError.from_error(e) from e
            raise

        logger.info(
            "Query executed successfully", extra={"row_count": result.row_count}
        )
        return result

    def _log_statement(self, sql: str, args: list[Any]) -> None:
        extra: dict[str, Any] = {"statement": sql, "parameters": parameter_shape(args)}
        if self.log_values:
            extra["parameter_values"] = args
        logger.info(f"Executing query: {sql}", extra=extra)

    async def _handle_failure(self, error: QueryExecutionError) -> bool:
        """Classify a failure and repair the connection state if it is fatal."""
        if self.include_detail:
            error.detail = "".join(traceback.format_exception(error))

        logger.error(
            f"Query error: {error.message}",
            extra={"code": error.code, "details": error.details},
        )

        if not is_connection_fatal(error):
            return False

        logger.warning(
            "Connection-fatal query error, reconnecting", extra={"code": error.code}
        )
        await self.supervisor.invalidate()
        self.supervisor.schedule_connect()
        return True
