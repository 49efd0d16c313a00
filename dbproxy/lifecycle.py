"""Process lifecycle controller.

Starts the HTTP listener, connects to the database in the background once the
listener is up, and turns termination signals into an orderly shutdown.
"""

import asyncio
import logging
import signal
from typing import Any

import uvicorn

from dbproxy.api.app import create_app
from dbproxy.config import ServerSettings
from dbproxy.database.config import DatabaseSettings
from dbproxy.database.supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class LifecycleController:
    """Controls startup and shutdown of the service.

    The listener never waits for the database: the first connect runs as a
    background task. Shutdown closes the database connection within a grace
    period and never fails.
    """

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        server_settings: ServerSettings | None = None,
        database_settings: DatabaseSettings | None = None,
    ):
        """Initialize lifecycle controller.

        Args:
            supervisor: Supervisor owning the database connection
            server_settings: Listener and runtime settings
            database_settings: Database settings passed to the application
        """
        self.supervisor = supervisor
        self.server_settings = server_settings or ServerSettings()
        self.database_settings = database_settings or DatabaseSettings()

        self.server: uvicorn.Server | None = None
        self.connect_task: asyncio.Task[bool] | None = None
        self.shutdown_requested = False

    async def serve(self) -> None:
        """Run the HTTP listener until shutdown."""
        app = create_app(
            self.supervisor,
            server_settings=self.server_settings,
            database_settings=self.database_settings,
            lifecycle=self,
        )
        config = uvicorn.Config(
            app,
            host=self.server_settings.bind_host,
            port=self.server_settings.port,
            log_level=self.server_settings.log_level.lower(),
            lifespan="on",
        )
        self.server = uvicorn.Server(config)
        await self.server.serve()

    async def startup(self) -> None:
        """Handle application startup."""
        self._setup_signal_handlers()

        logger.info(f"Server running on port {self.server_settings.port}")
        logger.info(
            "Health check available at: "
            f"http://localhost:{self.server_settings.port}/api/health"
        )
        logger.info(
            "Environment",
            extra={
                "environment": self.server_settings.environment,
                "port": self.server_settings.port,
                "db_host": self.database_settings.host,
                "db_name": self.database_settings.database,
            },
        )

        self.connect_task = self.supervisor.schedule_connect()
        self.connect_task.add_done_callback(self._on_initial_connect)

    def _on_initial_connect(self, task: "asyncio.Task[bool]") -> None:
        if task.cancelled() or task.exception() is not None:
            return
        if not task.result():
            logger.warning("Server started without database connection")

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError):
                # No loop signal support (e.g. Windows or a non-main thread)
                logger.debug(f"Cannot install handler for signal {sig}")

    def request_shutdown(self, sig: Any = None) -> None:
        """Ask the listener to stop; shutdown continues in ``shutdown()``.

        A second request stops the listener without waiting for open
        requests to finish.
        """
        if self.shutdown_requested:
            logger.warning(f"Received signal {sig} again, forcing exit")
            if self.server is not None:
                self.server.force_exit = True
            return

        logger.info(f"Received signal {sig}, initiating shutdown...")
        self.shutdown_requested = True
        if self.server is not None:
            self.server.should_exit = True

    async def shutdown(self) -> None:
        """Close the database connection, bounded by the grace period.

        Errors are logged and swallowed so that the process always exits
        cleanly.
        """
        logger.info("Shutting down gracefully...")
        grace_period = self.server_settings.shutdown_grace_period
        try:
            await asyncio.wait_for(self.supervisor.disconnect(), timeout=grace_period)
        except TimeoutError:
            logger.warning(
                f"Database connection did not close within {grace_period}s"
            )
        except Exception as e:
            logger.error(f"Error closing database connection: {e}")
        finally:
            self._remove_signal_handlers()

    def _remove_signal_handlers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
