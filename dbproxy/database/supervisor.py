"""Database connection supervisor.

Owns the single database connection and the state machine around it:
connecting with a bounded retry chain, invalidating a broken connection,
scheduling reconnects in the background, and closing on shutdown.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Any

from dbproxy.exceptions import ConnectionBusyError, NotConnectedError

from .config import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    ConnectionConfig,
    DatabaseSettings,
    build_connection_config,
)
from .connection import DatabaseConnection, QueryResult

logger = logging.getLogger(__name__)

ConfigFactory = Callable[[], ConnectionConfig]
Connector = Callable[[ConnectionConfig], Awaitable[DatabaseConnection]]


class ConnectionState(Enum):
    """Connection state enumeration."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionSupervisor:
    """Supervises the single database connection.

    The state, the connection handle and the retry counter change together
    under ``_state_lock``. Whole connect chains are serialized by
    ``_connect_lock`` so that no two connect attempts overlap. Statements are
    executed one at a time on the shared connection.
    """

    def __init__(
        self,
        config_factory: ConfigFactory = build_connection_config,
        connector: Connector = DatabaseConnection.open,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        close_timeout: float = 5.0,
    ):
        """Initialize connection supervisor.

        Args:
            config_factory: Builds fresh connection parameters per attempt
            connector: Opens a connection from connection parameters
            max_retries: Retries after a failed attempt before giving up
            retry_delay: Delay between attempts in seconds
            close_timeout: Maximum time to wait when closing a stale connection
        """
        self.config_factory = config_factory
        self.connector = connector
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.close_timeout = close_timeout

        self._state = ConnectionState.DISCONNECTED
        self._handle: DatabaseConnection | None = None
        self._retry_count = 0

        self._state_lock = asyncio.Lock()
        self._connect_lock = asyncio.Lock()
        self._connect_task: asyncio.Task[bool] | None = None

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "ConnectionSupervisor":
        """Create a supervisor using the retry policy from settings."""
        return cls(max_retries=settings.max_retries, retry_delay=settings.retry_delay)

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def retry_count(self) -> int:
        """Get number of failed attempts since the last successful connect."""
        return self._retry_count

    def is_connected(self) -> bool:
        """Check whether a live connection is available."""
        return self._state is ConnectionState.CONNECTED

    async def connect(self) -> bool:
        """Connect to the database, retrying failed attempts.

        Returns immediately if already connected. After a failed attempt the
        supervisor waits ``retry_delay`` and tries again until the retry
        counter reaches ``max_retries``. The counter is only reset by a
        successful connect, so once exhausted a later call makes a single
        attempt.

        Returns:
            bool: True if connected, False if retries are exhausted
        """
        async with self._connect_lock:
            while True:
                if self.is_connected():
                    return True

                if await self._attempt_connect():
                    return True

                if self._retry_count >= self.max_retries:
                    logger.warning(
                        "Max connection retries reached, continuing without database",
                        extra={"max_retries": self.max_retries},
                    )
                    return False

                self._retry_count += 1
                logger.info(
                    f"Retrying connection ({self._retry_count}/{self.max_retries}) "
                    f"in {self.retry_delay}s...",
                    extra={
                        "attempt": self._retry_count,
                        "max_retries": self.max_retries,
                        "delay": self.retry_delay,
                    },
                )
                await asyncio.sleep(self.retry_delay)

    async def _attempt_connect(self) -> bool:
        """Make a single connect attempt."""
        async with self._state_lock:
            self._state = ConnectionState.CONNECTING
            connected = False
            try:
                if self._handle is not None:
                    logger.info("Closing existing database connection...")
                    await self._discard_handle()

                config = self.config_factory()
                logger.info(
                    "Initializing new database connection...",
                    extra=config.describe(),
                )
                self._handle = await self.connector(config)
                self._retry_count = 0
                connected = True
                logger.info("Successfully connected to database")
            except Exception as e:
                logger.error(
                    f"Database connection error: {e}",
                    extra={
                        "error_type": type(e).__name__,
                        "details": getattr(e, "details", None),
                    },
                )
            finally:
                self._state = (
                    ConnectionState.CONNECTED
                    if connected
                    else ConnectionState.DISCONNECTED
                )
            return connected

    async def _discard_handle(self) -> None:
        """Close and drop the current handle, ignoring close errors."""
        handle, self._handle = self._handle, None
        await self._close_quietly(handle)

    async def _close_quietly(self, handle: DatabaseConnection | None) -> None:
        if handle is None:
            return

        try:
            await asyncio.wait_for(handle.close(), timeout=self.close_timeout)
        except Exception as e:
            logger.warning(
                "Failed to close database connection", extra={"error": str(e)}
            )

    def schedule_connect(self) -> "asyncio.Task[bool]":
        """Start ``connect()`` in the background without waiting for it.

        While a scheduled connect is still running, the same task is returned
        instead of starting another one.

        Returns:
            asyncio.Task: The running connect task
        """
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self.connect())
        return self._connect_task

    async def invalidate(self) -> None:
        """Mark the current connection as unusable and close it.

        Has no effect unless connected. The retry counter is left untouched.
        """
        if not self.is_connected():
            return

        stale, self._handle = self._handle, None
        self._state = ConnectionState.DISCONNECTED
        logger.warning("Database connection invalidated")

        # Wait for a statement still running on the stale handle
        async with self._state_lock:
            await self._close_quietly(stale)

    async def disconnect(self) -> None:
        """Close the connection for shutdown.

        Cancels a scheduled connect, closes the handle if present and leaves
        the supervisor disconnected. The retry counter is left untouched.
        """
        task = self._connect_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        async with self._state_lock:
            handle, self._handle = self._handle, None
            self._state = ConnectionState.DISCONNECTED
            if handle is not None:
                await handle.close()
                logger.info("Database connection closed")

    async def query(
        self, sql: str, args: Sequence[Any] | None = None
    ) -> QueryResult:
        """Execute a statement on the live connection.

        Args:
            sql: Statement text
            args: Positional parameter values

        Returns:
            QueryResult: Result of the statement

        Raises:
            NotConnectedError: If there is no live connection
            QueryExecutionError: If the statement fails
        """
        if not self.is_connected():
            raise NotConnectedError("Database not connected")

        async with self._state_lock:
            handle = self._handle
            if not self.is_connected() or handle is None:
                raise NotConnectedError("Database not connected")
            return await handle.execute(sql, args)

    async def ping(self, timeout: float) -> None:
        """Run the liveness probe on the live connection.

        Waiting for a running statement to finish and the probe itself are
        each bounded by ``timeout``.

        Args:
            timeout: Maximum time to wait for the connection and for the
                probe, in seconds

        Raises:
            NotConnectedError: If there is no live connection
            ConnectionBusyError: If statements occupy the connection longer
                than ``timeout``
            QueryExecutionError: If the probe fails or times out
        """
        if not self.is_connected():
            raise NotConnectedError("Database not connected")

        try:
            await asyncio.wait_for(self._state_lock.acquire(), timeout=timeout)
        except TimeoutError as e:
            raise ConnectionBusyError(
                f"Connection busy for more than {timeout}s",
                details={"timeout": timeout},
            ) from e

        try:
            handle = self._handle
            if not self.is_connected() or handle is None:
                raise NotConnectedError("Database not connected")
            await handle.ping(timeout)
        finally:
            self._state_lock.release()
