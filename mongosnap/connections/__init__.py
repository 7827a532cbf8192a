"""MongoDB connection registry and schema introspection."""

from .errors import ConnectionFailedError, ConnectionNotFoundError
from .registry import ConnectionInfo, ConnectionRegistry, mask_uri
from .schema import DatabaseSchema, describe_database

__all__ = [
    "ConnectionFailedError",
    "ConnectionInfo",
    "ConnectionNotFoundError",
    "ConnectionRegistry",
    "DatabaseSchema",
    "describe_database",
    "mask_uri",
]
