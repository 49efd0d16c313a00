"""Database health reporting.

Builds the point-in-time health document served by the health endpoint from
the supervisor state and a liveness probe.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from dbproxy.exceptions import ConnectionBusyError, NotConnectedError

from .supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0


class HealthStatus(Enum):
    """Health status enumeration."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"


class DatabaseStatus(Enum):
    """Database status enumeration."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


def utc_timestamp() -> str:
    """Get the current time as an ISO-8601 UTC timestamp."""
    return (
        datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    )


@dataclass
class HealthDocument:
    """Point-in-time health report."""

    status: HealthStatus
    timestamp: str
    uptime: float | None = None
    database: DatabaseStatus | None = None
    database_error: str | None = None
    environment: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def is_healthy(self) -> bool:
        """Check if the service reports itself healthy."""
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if self.status == HealthStatus.DEGRADED:
            return {
                "status": self.status.value,
                "error": self.error,
                "timestamp": self.timestamp,
            }

        data: dict[str, Any] = {
            "status": self.status.value,
            "uptime": self.uptime,
            "timestamp": self.timestamp,
            "database": self.database.value if self.database else None,
            "environment": self.environment,
        }
        if self.database_error is not None:
            data["databaseError"] = self.database_error
        return data


class HealthReporter:
    """Reports service and database health.

    A failing liveness probe invalidates the connection and schedules a
    reconnect in the background; the report itself never waits for it.
    """

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        environment: dict[str, Any] | None = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ):
        self.supervisor = supervisor
        self.environment = environment or {}
        self.probe_timeout = probe_timeout
        self.started_at = time.monotonic()

    async def report(self) -> HealthDocument:
        """Build the health document.

        Never raises: internal failures produce a degraded document.

        Returns:
            HealthDocument: Current health
        """
        try:
            return await self._build_report()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return HealthDocument(
                status=HealthStatus.DEGRADED,
                timestamp=utc_timestamp(),
                error=str(e),
            )

    async def _build_report(self) -> HealthDocument:
        document = HealthDocument(
            status=HealthStatus.HEALTHY,
            uptime=round(time.monotonic() - self.started_at, 3),
            timestamp=utc_timestamp(),
            database=DatabaseStatus.DISCONNECTED,
            environment=dict(self.environment),
        )

        if not self.supervisor.is_connected():
            return document

        try:
            await self.supervisor.ping(self.probe_timeout)
            document.database = DatabaseStatus.CONNECTED
        except NotConnectedError:
            # Connection dropped between the state check and the probe
            document.database = DatabaseStatus.DISCONNECTED
        except ConnectionBusyError as e:
            # Busy with client statements; reported as connected, not probed
            logger.warning(f"Liveness probe skipped: {e.message}")
            document.database = DatabaseStatus.CONNECTED
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            document.database = DatabaseStatus.ERROR
            document.database_error = str(e)

            await self.supervisor.invalidate()
            self.supervisor.schedule_connect()

        return document
