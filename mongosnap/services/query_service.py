"""
Service wiring for dependency injection and lifecycle management.

Long-lived objects are created in ``service_lifespan`` and stored on
``app.state``; request handlers receive them through ``Depends``.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from structlog import get_logger

from mongosnap.config import get_settings
from mongosnap.connections.registry import ConnectionRegistry
from mongosnap.generation.generator import QueryGenerator
from mongosnap.sandbox.executor import QueryExecutor
from mongosnap.services.limiter import UserConcurrencyLimiter

logger = get_logger()


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise RuntimeError(f"{name} not initialized. Use service_lifespan.")
    return service


def get_registry(request: Request) -> ConnectionRegistry:
    return _service(request, "registry")


def get_executor(request: Request) -> QueryExecutor:
    return _service(request, "executor")


def get_generator(request: Request) -> QueryGenerator:
    return _service(request, "generator")


def get_limiter(request: Request) -> UserConcurrencyLimiter:
    return _service(request, "limiter")


@asynccontextmanager
async def service_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create, start and finally close the application services."""
    settings = get_settings()

    logger.info("Initializing services...")

    registry = ConnectionRegistry(settings.connection)
    await registry.start()

    app.state.registry = registry
    app.state.executor = QueryExecutor(settings.sandbox)
    app.state.generator = QueryGenerator(settings.openai)
    app.state.limiter = UserConcurrencyLimiter(settings.sandbox.max_concurrent_per_user)

    if not app.state.generator.available:
        logger.warning("OPENAI_API_KEY not set, query generation disabled")

    logger.info("Services started")

    try:
        yield
    finally:
        logger.info("Shutting down services...")
        await registry.close()
        logger.info("Services stopped")
