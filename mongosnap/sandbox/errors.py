"""Error taxonomy for query execution."""

from __future__ import annotations


class QueryExecutionError(Exception):
    """Base class for errors raised by the query executor itself."""


class SecurityViolationError(QueryExecutionError):
    """Query matched a blocked construct and was never executed."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = list(violations)
        super().__init__("; ".join(self.violations) or "Security violation")


class InvalidArgumentError(QueryExecutionError, ValueError):
    """A sandbox utility received a malformed value."""


class QuerySyntaxError(QueryExecutionError):
    """Query text could not be parsed."""

    def __init__(self, msg: str, lineno: int | None = None) -> None:
        self.lineno = lineno
        if lineno is not None:
            msg = f"Syntax error at line {lineno}: {msg}"
        super().__init__(msg)


class QueryTimeoutError(QueryExecutionError, TimeoutError):
    """Execution exceeded its wall-clock limit."""

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Query execution timed out after {timeout_ms}ms")
