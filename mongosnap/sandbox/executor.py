"""
High-level query execution interface.

Orchestrates: metadata → security pre-check → sandboxed run → result.
This is the single entry point consumed by the HTTP layer.
"""

from __future__ import annotations

from typing import Any

from structlog import get_logger

from mongosnap.config import SandboxConfig, get_settings
from mongosnap.sandbox.errors import QueryTimeoutError, SecurityViolationError
from mongosnap.sandbox.metadata import extract_metadata
from mongosnap.sandbox.models import ExecutionError, ExecutionResult, ExecutionStatus
from mongosnap.sandbox.runner import run_query
from mongosnap.sandbox.security import SecurityChecker

logger = get_logger()


class QueryExecutor:
    """
    Facade that combines metadata extraction, validation and the run loop.

    Never raises for query problems: blocked, timed out and failed queries
    all come back as an ``ExecutionResult`` with the matching status.

    Usage::

        executor = QueryExecutor()
        result = await executor.execute("db.users.find({})", database)
    """

    def __init__(self, config: SandboxConfig | None = None) -> None:
        self._config = config or get_settings().sandbox
        self._security = SecurityChecker()

    @property
    def config(self) -> SandboxConfig:
        return self._config

    def resolve_timeout(self, timeout_ms: int | None = None) -> int:
        """Clamp a requested timeout to the configured bounds."""
        effective = min(
            timeout_ms or self._config.default_timeout_ms,
            self._config.max_timeout_ms,
        )
        return max(effective, 1)

    async def execute(
        self,
        query: str,
        database: Any,
        timeout_ms: int | None = None,
    ) -> ExecutionResult:
        """
        Validate and execute a query against ``database``.

        Args:
            query: Query source in the mongosh-flavoured Python dialect.
            database: Motor database handle the ``db`` object is bound to.
            timeout_ms: Requested timeout (clamped to config limits).

        Returns:
            ``ExecutionResult`` with status, result or error, timing and metadata.
        """
        metadata = extract_metadata(query)

        # --- security pre-check ----------------------------------------
        check = self._security.validate(query)
        if not check.is_valid:
            logger.warning(
                "Query blocked by security checker",
                violations=check.violations,
                collection=metadata.primary_collection,
            )
            return ExecutionResult(
                status=ExecutionStatus.SECURITY_BLOCKED,
                metadata=metadata,
                violations=check.violations,
            )

        effective_timeout = self.resolve_timeout(timeout_ms)

        # --- execute in sandbox ----------------------------------------
        try:
            result = await run_query(
                query,
                database,
                effective_timeout,
                log_prefix=self._config.log_prefix,
                max_range_length=self._config.max_range_length,
            )
        except SecurityViolationError as exc:
            logger.warning("Query blocked by sandbox compiler", violations=exc.violations)
            return ExecutionResult(
                status=ExecutionStatus.SECURITY_BLOCKED,
                metadata=metadata,
                violations=exc.violations,
            )
        except QueryTimeoutError as exc:
            logger.warning(
                "Query execution timed out",
                timeout_ms=effective_timeout,
                collection=metadata.primary_collection,
                operation=metadata.primary_operation,
            )
            return ExecutionResult(
                status=ExecutionStatus.TIMEOUT,
                error=ExecutionError.from_exception(exc),
                execution_time=effective_timeout,
                metadata=metadata,
                exception=exc,
            )

        result.metadata = metadata
        logger.info(
            "Query execution finished",
            status=result.status.value,
            collection=metadata.primary_collection,
            operation=metadata.primary_operation,
            duration=f"{result.execution_time}ms",
            error=result.error.name if result.error else None,
        )
        return result
