"""
Request and response schemas for the MongoSnap query service.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _not_blank(value: str, what: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{what} cannot be empty")
    return value.strip()


# ---------------------------------------------------------------
# Connections
# ---------------------------------------------------------------

class ConnectRequest(BaseModel):
    """Open a connection for the current user."""

    connection_id: str = Field(description="Client-side identifier of the saved connection")
    uri: str = Field(description="MongoDB connection string")
    nickname: str = Field(default="", description="Display name")

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        v = _not_blank(v, "Connection string")
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("Connection string must start with mongodb:// or mongodb+srv://")
        return v

    @field_validator("connection_id")
    @classmethod
    def validate_connection_id(cls, v: str) -> str:
        return _not_blank(v, "Connection id")


class ConnectionInfoResponse(BaseModel):
    """Live connection details; credentials are never included."""

    connection_id: str
    nickname: str
    host: str
    database_name: str
    masked_uri: str
    connected_at: datetime
    last_used_at: datetime


class ConnectionStatusResponse(BaseModel):
    connection_id: str
    is_connected: bool
    is_alive: bool = False
    info: ConnectionInfoResponse | None = None


class ConnectionStatsResponse(BaseModel):
    total_connections: int
    active_connections: int
    stale_connections: int
    users: int


# ---------------------------------------------------------------
# Queries
# ---------------------------------------------------------------

class QueryRequest(BaseModel):
    """A query string to analyse or validate."""

    query: str = Field(description="Query code")

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        return _not_blank(v, "Query")


class ExecuteRequest(QueryRequest):
    """Execute a query against a live connection."""

    timeout_ms: int | None = Field(default=None, gt=0, description="Requested timeout (clamped by the server)")
    database: str | None = Field(default=None, description="Database name; defaults to the one in the URI")


class MetadataResponse(BaseModel):
    collections: list[str] = Field(default_factory=list)
    operations: list[str] = Field(default_factory=list)
    primary_collection: str
    primary_operation: str
    has_multiple_collections: bool
    has_multiple_operations: bool


class ValidationResponse(BaseModel):
    is_valid: bool
    violations: list[str] = Field(default_factory=list)


class ExecuteResponse(BaseModel):
    """Successful execution."""

    result: Any = Field(default=None, description="Relaxed Extended JSON result")
    metadata: MetadataResponse
    execution_time: int = Field(description="Milliseconds")
    documents_affected: int = 0


class GenerateRequest(BaseModel):
    """Natural-language request to turn into a query."""

    natural_language: str = Field(description="What the user wants, in plain words")
    include_schema: bool = Field(default=True, description="Send the database schema to the model")
    explain: bool = Field(default=False, description="Also return a short explanation")

    @field_validator("natural_language")
    @classmethod
    def validate_natural_language(cls, v: str) -> str:
        return _not_blank(v, "Request")


class GenerateResponse(BaseModel):
    query: str
    metadata: MetadataResponse
    validation: ValidationResponse
    explanation: str | None = None


class ErrorResponse(BaseModel):
    """Error response."""

    error: str = Field(description="Error message")
    code: str = Field(description="Error code")
    details: dict[str, Any] | None = Field(default=None)
