"""HTTP application.

Exposes the health and query endpoints and serves the prebuilt application
bundle with a fallback to its index document.
"""

import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel

from dbproxy.config import ServerSettings
from dbproxy.database.config import DatabaseSettings
from dbproxy.database.connection import QueryResult
from dbproxy.database.health import HealthReporter
from dbproxy.database.supervisor import ConnectionSupervisor
from dbproxy.exceptions import (
    InvalidRequestError,
    QueryExecutionError,
    ServiceUnavailableError,
)

from .gateway import QueryGateway

if TYPE_CHECKING:
    from dbproxy.lifecycle import LifecycleController

logger = logging.getLogger(__name__)

INDEX_DOCUMENT = "index.html"

# bytea values use PostgreSQL's hex output format
RESULT_ENCODERS: dict[Any, Any] = {
    bytes: lambda value: "\\x" + value.hex(),
    memoryview: lambda value: "\\x" + value.hex(),
}


class QueryRequest(BaseModel):
    """Body of a query request."""

    text: str | None = None
    params: list[Any] | None = None


def error_body(message: str, **fields: Any) -> dict[str, Any]:
    """Build an error response body, omitting empty optional fields."""
    body: dict[str, Any] = {"error": True, "message": message}
    body.update({k: v for k, v in fields.items() if v is not None})
    return body


def describe_validation_errors(errors: Sequence[Any]) -> str:
    """Summarize request body validation errors in one line."""
    problems = []
    for error in errors:
        parts = [str(part) for part in error.get("loc", ()) if part != "body"]
        location = ".".join(parts)
        message = error.get("msg", "Invalid value")
        problems.append(f"{location}: {message}" if location else message)
    return "Invalid request body: " + "; ".join(problems)


def encode_result(result: QueryResult) -> JSONResponse:
    """Render a query result as a JSON response.

    Raises:
        QueryExecutionError: If a row value cannot be represented in JSON
    """
    try:
        content = jsonable_encoder(result.to_dict(), custom_encoder=RESULT_ENCODERS)
        return JSONResponse(status_code=200, content=content)
    except (TypeError, ValueError) as e:
        raise QueryExecutionError(
            f"Query result could not be encoded as JSON: {e}",
            details={"row_count": result.row_count},
        ) from e


def _register_exception_handlers(app: FastAPI) -> None:
    """Map gateway and request errors to JSON error responses."""

    @app.exception_handler(RequestValidationError)
    async def on_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        message = describe_validation_errors(exc.errors())
        logger.warning(message)
        return JSONResponse(status_code=400, content=error_body(message))

    @app.exception_handler(InvalidRequestError)
    async def on_invalid_request(
        request: Request, exc: InvalidRequestError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content=error_body(exc.message))

    @app.exception_handler(ServiceUnavailableError)
    async def on_service_unavailable(
        request: Request, exc: ServiceUnavailableError
    ) -> JSONResponse:
        return JSONResponse(status_code=503, content=error_body(exc.message))

    @app.exception_handler(QueryExecutionError)
    async def on_query_error(
        request: Request, exc: QueryExecutionError
    ) -> JSONResponse:
        body = error_body(exc.message, detail=exc.detail)
        body["code"] = exc.code
        return JSONResponse(status_code=500, content=body)


def _register_routes(app: FastAPI, static_dir: Path) -> None:
    @app.get("/api/health")
    async def health(request: Request) -> JSONResponse:
        """Report service health.

        Always answers 200 so that orchestrators do not restart the service
        while the database is unavailable.
        """
        reporter: HealthReporter = request.app.state.health_reporter
        document = await reporter.report()
        return JSONResponse(status_code=200, content=document.to_dict())

    @app.post("/api/query")
    async def query(
        request: Request, body: QueryRequest | None = None
    ) -> JSONResponse:
        """Execute a raw statement on the database connection."""
        gateway: QueryGateway = request.app.state.query_gateway
        body = body or QueryRequest()
        result = await gateway.execute(body.text, body.params)
        return encode_result(result)

    @app.get("/{full_path:path}", include_in_schema=False)
    async def static_fallback(full_path: str) -> Response:
        """Serve a static asset, falling back to the index document."""
        if full_path == "api" or full_path.startswith("api/"):
            return JSONResponse(status_code=404, content=error_body("Not found"))

        root = static_dir.resolve()
        if full_path:
            candidate = (root / full_path).resolve()
            if candidate.is_relative_to(root) and candidate.is_file():
                return FileResponse(candidate)

        index = root / INDEX_DOCUMENT
        if index.is_file():
            return FileResponse(index)
        return JSONResponse(status_code=404, content=error_body("Not found"))


def create_app(
    supervisor: ConnectionSupervisor,
    server_settings: ServerSettings | None = None,
    database_settings: DatabaseSettings | None = None,
    lifecycle: "LifecycleController | None" = None,
) -> FastAPI:
    """Create the HTTP application.

    Args:
        supervisor: Supervisor owning the database connection
        server_settings: Listener and runtime settings
        database_settings: Database settings used for health and query policy
        lifecycle: Controller notified on application startup and shutdown

    Returns:
        FastAPI: Configured application
    """
    server_settings = server_settings or ServerSettings()
    database_settings = database_settings or DatabaseSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if lifecycle is not None:
            await lifecycle.startup()
        try:
            yield
        finally:
            if lifecycle is not None:
                await lifecycle.shutdown()

    app = FastAPI(title="dbproxy", lifespan=lifespan)
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.state.supervisor = supervisor
    app.state.health_reporter = HealthReporter(
        supervisor,
        environment={
            "environment": server_settings.environment,
            "port": server_settings.port,
            "dbHost": database_settings.host,
            "dbName": database_settings.database,
        },
        probe_timeout=database_settings.health_probe_timeout,
    )
    app.state.query_gateway = QueryGateway(
        supervisor,
        log_values=database_settings.log_query_values,
        include_detail=server_settings.is_development(),
    )

    _register_exception_handlers(app)
    _register_routes(app, Path(server_settings.static_dir))
    return app
