"""Shared helpers."""

from .serialization import documents_affected, normalize_result, to_json_compatible

__all__ = ["documents_affected", "normalize_result", "to_json_compatible"]
