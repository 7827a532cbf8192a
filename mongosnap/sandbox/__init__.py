"""Sandboxed execution of mongosh-flavoured query code."""

from .context import ExecutionContext, build_execution_context
from .errors import (
    InvalidArgumentError,
    QueryExecutionError,
    QuerySyntaxError,
    QueryTimeoutError,
    SecurityViolationError,
)
from .executor import QueryExecutor
from .metadata import extract_metadata, find_forbidden_operations
from .models import (
    ExecutionError,
    ExecutionResult,
    ExecutionStatus,
    QueryMetadata,
    SecurityValidationResult,
)
from .runner import execute, run_query
from .security import SecurityChecker, validate_security

__all__ = [
    "ExecutionContext",
    "ExecutionError",
    "ExecutionResult",
    "ExecutionStatus",
    "InvalidArgumentError",
    "QueryExecutionError",
    "QueryExecutor",
    "QueryMetadata",
    "QuerySyntaxError",
    "QueryTimeoutError",
    "SecurityChecker",
    "SecurityValidationResult",
    "SecurityViolationError",
    "build_execution_context",
    "execute",
    "extract_metadata",
    "find_forbidden_operations",
    "run_query",
    "validate_security",
]
