"""
Connection and execution API routes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from structlog import get_logger

from mongosnap.api.deps import get_user_id
from mongosnap.config import get_settings
from mongosnap.connections import (
    ConnectionFailedError,
    ConnectionInfo,
    ConnectionNotFoundError,
    ConnectionRegistry,
    describe_database,
)
from mongosnap.generation import QueryGenerationError, QueryGenerator
from mongosnap.models.schemas import (
    ConnectionInfoResponse,
    ConnectionStatsResponse,
    ConnectionStatusResponse,
    ConnectRequest,
    ErrorResponse,
    ExecuteRequest,
    ExecuteResponse,
    GenerateRequest,
    GenerateResponse,
    MetadataResponse,
    ValidationResponse,
)
from mongosnap.sandbox import (
    ExecutionStatus,
    QueryExecutor,
    extract_metadata,
    find_forbidden_operations,
    validate_security,
)
from mongosnap.services import (
    ConcurrencyLimitExceeded,
    UserConcurrencyLimiter,
    get_executor,
    get_generator,
    get_limiter,
    get_registry,
)
from mongosnap.utils import documents_affected, to_json_compatible

logger = get_logger()
router = APIRouter(prefix="/connections", tags=["connections"])


def _info_response(connection_id: str, info: ConnectionInfo) -> ConnectionInfoResponse:
    return ConnectionInfoResponse(
        connection_id=connection_id,
        nickname=info.nickname,
        host=info.host,
        database_name=info.database_name,
        masked_uri=info.masked_uri,
        connected_at=info.connected_at,
        last_used_at=info.last_used_at,
    )


def _error(status_code: int, message: str, code: str, details: dict | None = None) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": message, "code": code, "details": details},
    )


def _database(registry: ConnectionRegistry, user_id: str, connection_id: str, name: str | None = None):
    try:
        return registry.get_database(user_id, connection_id, name)
    except ConnectionNotFoundError:
        raise _error(404, "Not connected to the database", "NOT_CONNECTED")


# ---------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------

@router.post(
    "",
    response_model=ConnectionInfoResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Connect to a database",
    description="Open a connection, closing the user's other connections first"
)
async def connect(
    request: ConnectRequest,
    user_id: str = Depends(get_user_id),
    registry: ConnectionRegistry = Depends(get_registry)
) -> ConnectionInfoResponse:
    try:
        info = await registry.connect(user_id, request.connection_id, request.uri, request.nickname)
    except ConnectionFailedError as e:
        raise _error(400, str(e), "CONNECTION_FAILED")
    return _info_response(request.connection_id, info)


@router.get(
    "/stats",
    response_model=ConnectionStatsResponse,
    summary="Connection statistics for the calling user"
)
async def connection_stats(
    user_id: str = Depends(get_user_id),
    registry: ConnectionRegistry = Depends(get_registry)
) -> ConnectionStatsResponse:
    return ConnectionStatsResponse(**registry.connection_stats(user_id))


@router.post(
    "/{connection_id}/disconnect",
    summary="Disconnect from a database"
)
async def disconnect(
    connection_id: str,
    user_id: str = Depends(get_user_id),
    registry: ConnectionRegistry = Depends(get_registry)
) -> dict:
    disconnected = await registry.disconnect(user_id, connection_id)
    return {"connection_id": connection_id, "disconnected": disconnected}


@router.get(
    "/{connection_id}/status",
    response_model=ConnectionStatusResponse,
    summary="Connection status",
    description="Report whether the connection is registered and answers ping"
)
async def connection_status(
    connection_id: str,
    user_id: str = Depends(get_user_id),
    registry: ConnectionRegistry = Depends(get_registry)
) -> ConnectionStatusResponse:
    info = registry.get_connection_info(user_id, connection_id)
    if info is None:
        return ConnectionStatusResponse(connection_id=connection_id, is_connected=False)
    return ConnectionStatusResponse(
        connection_id=connection_id,
        is_connected=True,
        is_alive=await registry.test_connection(user_id, connection_id),
        info=_info_response(connection_id, info),
    )


@router.get(
    "/{connection_id}/schema",
    responses={404: {"model": ErrorResponse}},
    summary="Database schema",
    description="Collections, indexes and fields inferred from sample documents"
)
async def database_schema(
    connection_id: str,
    sample_size: int = Query(default=1, ge=0, le=100),
    user_id: str = Depends(get_user_id),
    registry: ConnectionRegistry = Depends(get_registry)
) -> dict:
    database = _database(registry, user_id, connection_id)
    schema = await describe_database(database, sample_size=sample_size)
    return to_json_compatible(schema.to_dict())


# ---------------------------------------------------------------
# Execution
# ---------------------------------------------------------------

@router.post(
    "/{connection_id}/execute",
    response_model=ExecuteResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        504: {"model": ErrorResponse}
    },
    summary="Execute a query",
    description="Validate and run query code against the connected database"
)
async def execute_query(
    connection_id: str,
    request: ExecuteRequest,
    user_id: str = Depends(get_user_id),
    registry: ConnectionRegistry = Depends(get_registry),
    executor: QueryExecutor = Depends(get_executor),
    limiter: UserConcurrencyLimiter = Depends(get_limiter)
) -> ExecuteResponse:
    """
    Execute a query.

    - **query**: Query code, e.g. `db.users.find({"active": True})`
    - **timeout_ms**: Optional timeout, clamped to the server maximum
    - **database**: Optional database name, defaults to the one in the URI
    """
    config = executor.config
    query = request.query

    if len(query) > config.max_query_length:
        raise _error(400, f"Query exceeds {config.max_query_length} characters", "QUERY_TOO_LONG")

    blocked = find_forbidden_operations(query, config.forbidden_operations)
    if blocked:
        raise _error(
            403,
            f"{', '.join(blocked)} operations are not allowed",
            "FORBIDDEN_OPERATION",
            {"operations": blocked},
        )

    validation = validate_security(query)
    if not validation.is_valid:
        logger.warning("Rejected query", user_id=user_id, violations=validation.violations)
        raise _error(400, "Query failed security validation", "SECURITY_VIOLATION",
                     {"violations": validation.violations})

    database = _database(registry, user_id, connection_id, request.database)

    try:
        async with limiter.slot(user_id):
            outcome = await executor.execute(query, database, request.timeout_ms)
    except ConcurrencyLimitExceeded as e:
        raise _error(429, str(e), "TOO_MANY_QUERIES")

    if outcome.status == ExecutionStatus.SECURITY_BLOCKED:
        raise _error(400, "Query failed security validation", "SECURITY_VIOLATION",
                     {"violations": outcome.violations})
    if outcome.status == ExecutionStatus.TIMEOUT:
        raise _error(504, outcome.error.message if outcome.error else "Query timed out", "QUERY_TIMEOUT")
    if outcome.status == ExecutionStatus.ERROR:
        error = outcome.error
        details = {"name": error.name}
        if get_settings().debug:
            details["stack"] = error.stack
        raise _error(422, error.message, "QUERY_ERROR", details)

    return ExecuteResponse(
        result=to_json_compatible(outcome.result),
        metadata=MetadataResponse(**outcome.metadata.to_dict()),
        execution_time=outcome.execution_time,
        documents_affected=documents_affected(outcome.result),
    )


# ---------------------------------------------------------------
# Generation
# ---------------------------------------------------------------

@router.post(
    "/{connection_id}/generate",
    response_model=GenerateResponse,
    responses={
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse}
    },
    summary="Generate a query",
    description="Turn a natural-language request into query code; nothing is executed"
)
async def generate_query(
    connection_id: str,
    request: GenerateRequest,
    user_id: str = Depends(get_user_id),
    registry: ConnectionRegistry = Depends(get_registry),
    generator: QueryGenerator = Depends(get_generator)
) -> GenerateResponse:
    if not generator.available:
        raise _error(503, "Query generation is not configured", "GENERATION_UNAVAILABLE")

    schema = None
    if request.include_schema:
        schema = await describe_database(_database(registry, user_id, connection_id))

    try:
        query = await generator.generate(request.natural_language, schema)
        explanation = await generator.explain(query, request.natural_language) if request.explain else None
    except QueryGenerationError as e:
        raise _error(502, str(e), "GENERATION_FAILED")

    validation = validate_security(query)
    return GenerateResponse(
        query=query,
        metadata=MetadataResponse(**extract_metadata(query).to_dict()),
        validation=ValidationResponse(is_valid=validation.is_valid, violations=validation.violations),
        explanation=explanation,
    )
