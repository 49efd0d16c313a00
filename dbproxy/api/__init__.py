"""HTTP layer: the FastAPI application and the query gateway."""

from .app import QueryRequest, create_app
from .gateway import QueryGateway, is_connection_fatal

__all__ = [
    "QueryGateway",
    "QueryRequest",
    "create_app",
    "is_connection_fatal",
]
