"""
MongoSnap Query Service - application entry point.

Wires the connection, generation and execution routers onto one FastAPI
app. Long-lived services are created by ``service_lifespan``.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mongosnap import __version__
from mongosnap.api import connections_router, queries_router
from mongosnap.config import Settings, get_settings
from mongosnap.connections import ConnectionNotFoundError
from mongosnap.services import service_lifespan

API_PREFIX = "/api/v1"

settings = get_settings()


def configure_logging(config: Settings) -> None:
    """JSON lines in production, coloured console output elsewhere."""
    renderer = (
        structlog.processors.JSONRenderer()
        if config.environment == "production"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        # 10 = DEBUG, 20 = INFO
        wrapper_class=structlog.make_filtering_bound_logger(10 if config.debug else 20),
    )


configure_logging(settings)
logger = structlog.get_logger()

app = FastAPI(
    title=settings.app_name,
    description="""
Run MongoDB queries written (or generated) as mongosh-flavoured Python.

- **Sandboxed execution**: allow-listed namespace, AST guard and a hard timeout
- **Security validation**: deny-list pre-check before anything runs
- **Query generation**: natural language to query through an OpenAI-compatible API
- **Schema introspection**: collections, indexes and inferred field types

Connect with `POST /api/v1/connections`, then generate or write a query and
run it with `POST /api/v1/connections/{id}/execute`. Every request carries
the caller in the `X-User-Id` header.
    """,
    version=__version__,
    lifespan=service_lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.server.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(ConnectionNotFoundError)
async def connection_not_found_handler(request: Request, exc: ConnectionNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "Not connected to the database", "code": "NOT_CONNECTED", "details": None},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {"message": str(exc)} if settings.debug else None,
        },
    )


app.include_router(connections_router, prefix=API_PREFIX)
app.include_router(queries_router, prefix=API_PREFIX)


@app.get("/health", tags=["health"])
async def health_check(request: Request) -> dict:
    """Liveness plus a summary of the connection registry, when it is running."""
    registry = getattr(request.app.state, "registry", None)
    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.environment,
        "connections": registry.connection_stats() if registry else None,
    }


@app.get("/", tags=["root"])
async def root() -> dict:
    return {
        "name": settings.app_name,
        "version": __version__,
        "api": API_PREFIX,
        "docs": app.docs_url,
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mongosnap.main:app",
        host=settings.server.host,
        port=settings.server.port,
        workers=settings.server.workers,
        reload=settings.debug,
    )
