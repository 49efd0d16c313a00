"""
Test configuration and fixtures for the database proxy tests.

Provides pytest fixtures for connection parameters, fake database
connections, and supervisors wired to fake connectors.
"""

import asyncio
import os
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dbproxy.database.config import ConnectionConfig
from dbproxy.database.connection import FieldDescription, QueryResult
from dbproxy.database.supervisor import ConnectionSupervisor
from dbproxy.exceptions import ConnectFailureError

# Environment variables read by the settings classes
SETTINGS_ENV_VARS = (
    "PGHOST",
    "PGPORT",
    "PGDATABASE",
    "PGUSER",
    "PGPASSWORD",
    "VITE_AZURE_DB_HOST",
    "VITE_AZURE_DB_NAME",
    "VITE_AZURE_DB_USER",
    "VITE_AZURE_DB_PASSWORD",
    "ENVIRONMENT",
    "NODE_ENV",
    "PORT",
    "BIND_HOST",
    "STATIC_DIR",
    "LOG_LEVEL",
    "SHUTDOWN_GRACE_PERIOD",
)


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """
    Remove settings environment variables for the duration of a test.

    Why: Settings are read from the process environment, which may contain
         real database credentials on a developer machine
    What: Provides an environment without any variable the settings read
    How: Uses patch.dict to drop the variables and restore them afterwards
    """
    with patch.dict(os.environ):
        for name in SETTINGS_ENV_VARS:
            os.environ.pop(name, None)
        for name in [n for n in os.environ if n.upper().startswith("DB_")]:
            os.environ.pop(name, None)
        yield


@pytest.fixture
def connection_config() -> ConnectionConfig:
    """
    Connection parameters for unit tests.

    Why: Supervisor and connection tests need a realistic configuration
    What: Provides a ConnectionConfig pointing at a local test database
    How: Builds the immutable model with test values and TLS disabled
    """
    return ConnectionConfig(
        host="localhost",
        port=5432,
        database="test_db",
        user="test_user",
        password="test_password",
        ssl_enabled=False,
        connect_timeout=1.0,
        query_timeout=1.0,
    )


@pytest.fixture
def sample_query_result() -> QueryResult:
    """
    Query result returned by fake connections.

    Why: Gateway and API tests need a result with rows and field metadata
    What: Provides a QueryResult with two rows of (id int4, name text)
    How: Builds the dataclasses directly
    """
    return QueryResult(
        rows=[{"id": 1, "name": "alpha"}, {"id": 2, "name": "beta"}],
        row_count=2,
        fields=[
            FieldDescription(name="id", data_type=23),
            FieldDescription(name="name", data_type=25),
        ],
    )


@pytest.fixture
def fake_connection_factory(sample_query_result: QueryResult):
    """
    Factory for fake database connections.

    Why: Supervisor tests must not open real network connections
    What: Returns a function creating mocks with the DatabaseConnection interface
    How: Uses MagicMock with AsyncMock execute, ping and close methods
    """

    def factory() -> MagicMock:
        connection = MagicMock()
        connection.execute = AsyncMock(return_value=sample_query_result)
        connection.ping = AsyncMock(return_value=None)
        connection.close = AsyncMock(return_value=None)
        return connection

    return factory


@pytest.fixture
def connector(fake_connection_factory) -> AsyncMock:
    """
    Connector that always succeeds with a new fake connection.

    Why: Most tests need a supervisor that can connect
    What: Provides an AsyncMock standing in for DatabaseConnection.open
    How: Each call returns a fresh fake connection
    """
    return AsyncMock(side_effect=lambda config: fake_connection_factory())


@pytest.fixture
def failing_connector() -> AsyncMock:
    """
    Connector that always fails.

    Why: Retry tests need an unreachable database
    What: Provides an AsyncMock raising ConnectFailureError on every call
    How: Sets side_effect to the exception instance
    """
    return AsyncMock(side_effect=ConnectFailureError("connection refused"))


@pytest.fixture
def supervisor_factory(connection_config: ConnectionConfig):
    """
    Factory for supervisors with no retry delay.

    Why: Retry chains would otherwise sleep five seconds per attempt
    What: Returns a function building a ConnectionSupervisor around a connector
    How: Uses a constant config factory and retry_delay=0
    """

    def factory(connector: AsyncMock, **kwargs) -> ConnectionSupervisor:
        kwargs.setdefault("retry_delay", 0.0)
        return ConnectionSupervisor(
            config_factory=lambda: connection_config,
            connector=connector,
            **kwargs,
        )

    return factory


@pytest.fixture
def blocking_connector(fake_connection_factory):
    """
    Connector that waits until released.

    Why: Concurrency tests need a connect attempt that stays in flight
    What: Returns (connector, release_event); connect completes once the event is set
    How: AsyncMock side effect awaiting an asyncio.Event
    """
    release = asyncio.Event()

    async def open_connection(config):
        await release.wait()
        return fake_connection_factory()

    return AsyncMock(side_effect=open_connection), release
