"""Database infrastructure module.

Provides connection configuration, the single supervised database
connection, and health reporting for the query proxy.
"""

from .config import (
    ConnectionConfig,
    DatabaseSettings,
    build_connection_config,
    get_database_settings,
)
from .connection import (
    DatabaseConnection,
    FieldDescription,
    QueryResult,
)
from .health import (
    DatabaseStatus,
    HealthDocument,
    HealthReporter,
    HealthStatus,
)
from .supervisor import (
    ConnectionState,
    ConnectionSupervisor,
)

__all__ = [
    # Configuration
    "ConnectionConfig",
    # Connection management
    "ConnectionState",
    "ConnectionSupervisor",
    "DatabaseConnection",
    "DatabaseSettings",
    # Health reporting
    "DatabaseStatus",
    "FieldDescription",
    "HealthDocument",
    "HealthReporter",
    "HealthStatus",
    "QueryResult",
    "build_connection_config",
    "get_database_settings",
]
