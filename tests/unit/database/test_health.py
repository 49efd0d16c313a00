"""
Unit tests for database health reporting.

Tests the health document for connected, disconnected and failing databases,
the reconnect side effect of a failed probe, and degraded reports.
"""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from dbproxy.database.health import (
    DatabaseStatus,
    HealthDocument,
    HealthReporter,
    HealthStatus,
)
from dbproxy.database.supervisor import ConnectionState
from dbproxy.exceptions import NotConnectedError, QueryExecutionError


class TestHealthDocument:
    """Test health document serialization."""

    def test_healthy_document_to_dict(self) -> None:
        """
        Why: The health endpoint body has a fixed shape
        What: Tests to_dict() of a healthy document omits an empty databaseError
        How: Builds a document and validates the serialized keys
        """
        document = HealthDocument(
            status=HealthStatus.HEALTHY,
            timestamp="2024-01-01T00:00:00.000Z",
            uptime=12.5,
            database=DatabaseStatus.CONNECTED,
            environment={"environment": "production"},
        )

        assert document.to_dict() == {
            "status": "healthy",
            "uptime": 12.5,
            "timestamp": "2024-01-01T00:00:00.000Z",
            "database": "connected",
            "environment": {"environment": "production"},
        }
        assert document.is_healthy is True

    def test_degraded_document_to_dict(self) -> None:
        """
        Why: Internal reporter failures still need a readable body
        What: Tests to_dict() of a degraded document carries the error only
        How: Builds a degraded document and validates the serialized form
        """
        document = HealthDocument(
            status=HealthStatus.DEGRADED,
            timestamp="2024-01-01T00:00:00.000Z",
            error="boom",
        )

        assert document.to_dict() == {
            "status": "degraded",
            "error": "boom",
            "timestamp": "2024-01-01T00:00:00.000Z",
        }


class TestHealthReporter:
    """Test health report generation."""

    @pytest.mark.asyncio
    async def test_report_disconnected(self, supervisor_factory, connector) -> None:
        """
        Why: A disconnected database must be reported without probing
        What: Tests report() returns database=disconnected and status healthy
        How: Reports on a supervisor that never connected
        """
        supervisor = supervisor_factory(connector)
        reporter = HealthReporter(supervisor, environment={"port": 8080})

        document = await reporter.report()

        assert document.status == HealthStatus.HEALTHY
        assert document.database == DatabaseStatus.DISCONNECTED
        assert document.database_error is None
        assert document.environment == {"port": 8080}
        assert document.uptime is not None and document.uptime >= 0
        assert document.timestamp.endswith("Z")

    @pytest.mark.asyncio
    async def test_report_connected(self, supervisor_factory, connector) -> None:
        """
        Why: A working database must be reported as connected
        What: Tests report() probes the connection with the probe timeout
        How: Connects, reports and validates the fake connection's ping call
        """
        supervisor = supervisor_factory(connector)
        await supervisor.connect()
        reporter = HealthReporter(supervisor, probe_timeout=2.0)

        document = await reporter.report()

        assert document.database == DatabaseStatus.CONNECTED
        supervisor._handle.ping.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_probe_failure_reports_error_and_reconnects(
        self, supervisor_factory, connector
    ) -> None:
        """
        Why: A broken connection detected by the probe must be repaired
        What: Tests a failed probe yields database=error and a background reconnect
        How: Makes ping fail, reports, then awaits the scheduled connect
        """
        supervisor = supervisor_factory(connector)
        await supervisor.connect()
        broken = supervisor._handle
        broken.ping.side_effect = QueryExecutionError(
            "terminating connection due to administrator command", code="57P01"
        )
        reporter = HealthReporter(supervisor)

        document = await reporter.report()

        assert document.status == HealthStatus.HEALTHY
        assert document.database == DatabaseStatus.ERROR
        assert document.database_error == (
            "terminating connection due to administrator command"
        )
        assert supervisor.state is not ConnectionState.CONNECTED
        broken.close.assert_awaited_once()

        assert await supervisor.schedule_connect() is True
        assert connector.await_count == 2
        assert supervisor.is_connected() is True

    @pytest.mark.asyncio
    async def test_internal_error_produces_degraded_report(self) -> None:
        """
        Why: The health endpoint must answer even if the reporter breaks
        What: Tests report() returns a degraded document instead of raising
        How: Uses a supervisor mock whose is_connected() raises
        """
        supervisor = MagicMock()
        supervisor.is_connected.side_effect = RuntimeError("state unavailable")
        reporter = HealthReporter(supervisor)

        document = await reporter.report()

        assert document.status == HealthStatus.DEGRADED
        assert document.error == "state unavailable"

    @pytest.mark.asyncio
    async def test_not_connected_during_probe(self) -> None:
        """
        Why: The connection may drop between the state check and the probe
        What: Tests a NotConnectedError from ping() reports disconnected
        How: Uses a supervisor mock that claims connected but refuses to ping
        """
        supervisor = MagicMock()
        supervisor.is_connected.return_value = True
        supervisor.ping = AsyncMock(side_effect=NotConnectedError("gone"))
        supervisor.invalidate = AsyncMock()
        reporter = HealthReporter(supervisor)

        document = await reporter.report()

        assert document.database == DatabaseStatus.DISCONNECTED
        supervisor.invalidate.assert_not_awaited()
        supervisor.schedule_connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_busy_connection_reported_promptly(
        self, supervisor_factory, connector
    ) -> None:
        """
        Why: Health checks must stay fast while client statements run
        What: Tests report() answers within the probe timeout and keeps the
              busy connection
        How: Holds the connection with a blocked execute and reports with a
             short probe timeout
        """
        supervisor = supervisor_factory(connector)
        await supervisor.connect()
        handle = supervisor._handle
        release = asyncio.Event()

        async def slow_execute(sql, args):
            await release.wait()

        handle.execute.side_effect = slow_execute
        query_task = asyncio.create_task(supervisor.query("SELECT pg_sleep(30)", []))
        await asyncio.sleep(0)
        reporter = HealthReporter(supervisor, probe_timeout=0.05)

        started = time.monotonic()
        document = await reporter.report()
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        assert document.database == DatabaseStatus.CONNECTED
        assert document.database_error is None
        assert supervisor.is_connected() is True
        handle.ping.assert_not_awaited()
        handle.close.assert_not_awaited()

        release.set()
        await query_task
