"""Entry point for the database proxy service."""

import argparse
import asyncio
import logging
import sys

from dbproxy.config import ServerSettings
from dbproxy.database.config import get_database_settings
from dbproxy.database.supervisor import ConnectionSupervisor
from dbproxy.lifecycle import LifecycleController

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Run the service until a termination signal arrives."""
    server_settings = ServerSettings()

    parser = argparse.ArgumentParser(description="Database query proxy")
    parser.add_argument("--port", type=int, help="Listener port")
    parser.add_argument(
        "--log-level", default=server_settings.log_level, help="Log level"
    )
    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.port is not None:
        server_settings = server_settings.model_copy(update={"port": args.port})
    server_settings = server_settings.model_copy(
        update={"log_level": args.log_level}
    )

    database_settings = get_database_settings()
    supervisor = ConnectionSupervisor.from_settings(database_settings)
    controller = LifecycleController(supervisor, server_settings, database_settings)

    try:
        asyncio.run(controller.serve())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
