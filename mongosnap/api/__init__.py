"""API module."""

from .connections import router as connections_router
from .queries import router as queries_router

__all__ = ["connections_router", "queries_router"]
