"""Data models for the query execution sandbox."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


UNKNOWN = "unknown"


class ExecutionStatus(str, Enum):
    """Status of a query execution."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    SECURITY_BLOCKED = "security_blocked"


@dataclass(frozen=True)
class QueryMetadata:
    """Collections and operations referenced by a query string."""

    collections: frozenset[str] = frozenset()
    operations: frozenset[str] = frozenset()
    primary_collection: str = UNKNOWN
    primary_operation: str = UNKNOWN
    has_multiple_collections: bool = False
    has_multiple_operations: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "collections": sorted(self.collections),
            "operations": sorted(self.operations),
            "primary_collection": self.primary_collection,
            "primary_operation": self.primary_operation,
            "has_multiple_collections": self.has_multiple_collections,
            "has_multiple_operations": self.has_multiple_operations,
        }


@dataclass
class SecurityValidationResult:
    """Result of the deny-list pre-check."""

    is_valid: bool
    violations: list[str] = field(default_factory=list)


@dataclass
class ExecutionError:
    """Normalized description of an exception raised by query code."""

    message: str
    name: str
    stack: str = ""

    @classmethod
    def from_exception(cls, exc: BaseException, stack: str = "") -> "ExecutionError":
        return cls(message=str(exc), name=type(exc).__name__, stack=stack)


@dataclass
class ExecutionResult:
    """Result of a sandboxed query execution."""

    status: ExecutionStatus
    result: Any = None
    error: ExecutionError | None = None
    execution_time: int = 0
    metadata: QueryMetadata | None = None
    violations: list[str] = field(default_factory=list)
    exception: BaseException | None = field(default=None, repr=False, compare=False)

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS
