"""
Shell-style constructors injected into the query namespace.

Each one is a pure function of its arguments. Names follow the mongo shell
(``ObjectId``, ``ISODate``, ``NumberLong``...) because that is what generated
queries use.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from decimal import InvalidOperation
from typing import Any

from bson import Decimal128, Int64
from bson import ObjectId as BsonObjectId

from mongosnap.sandbox.errors import InvalidArgumentError

_HEX_OBJECT_ID = re.compile(r"^[0-9a-fA-F]{24}$")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ObjectId(value: Any = None) -> BsonObjectId:  # noqa: N802
    """Build an ObjectId, generating a fresh one when no value is given."""
    if value is None:
        return BsonObjectId()
    if isinstance(value, BsonObjectId):
        return value
    if isinstance(value, str) and _HEX_OBJECT_ID.match(value):
        return BsonObjectId(value)
    raise InvalidArgumentError(
        f"Invalid ObjectId: {value}. ObjectId must be a 24-character hex string."
    )


def _parse_datetime(value: str) -> datetime:
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidArgumentError(f"Invalid date: {value}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def Date(*args: Any) -> datetime:  # noqa: N802
    """
    JavaScript-style ``Date`` constructor, always in UTC.

    ``Date()`` is now, ``Date("2024-01-01")`` parses ISO-8601,
    ``Date(1700000000000)`` takes epoch milliseconds and
    ``Date(2024, 0, 31)`` takes a zero-based month like the original.
    """
    if not args:
        return datetime.now(timezone.utc)

    if len(args) == 1:
        value = args[0]
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        if isinstance(value, str):
            return _parse_datetime(value)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return _EPOCH + timedelta(milliseconds=value)
        raise InvalidArgumentError(f"Invalid date: {value}")

    try:
        year, month, *rest = (int(part) for part in args)
        day, hour, minute, second, millis = (rest + [1, 0, 0, 0, 0][len(rest):])[:5]
        return datetime(
            year, month + 1, day, hour, minute, second, millis * 1000, tzinfo=timezone.utc
        )
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"Invalid date: {args!r} ({exc})") from None


def ISODate(value: str | None = None) -> datetime:  # noqa: N802
    """Parse an ISO-8601 string, or return now."""
    if value is None:
        return datetime.now(timezone.utc)
    if not isinstance(value, str):
        raise InvalidArgumentError(f"Invalid date: {value}")
    return _parse_datetime(value)


def _integer(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise InvalidArgumentError(f"Invalid integer: {value}")
        return int(value)
    if isinstance(value, str):
        match = re.match(r"^\s*([+-]?\d+)", value)
        if match:
            return int(match.group(1))
    raise InvalidArgumentError(f"Invalid integer: {value}")


def NumberLong(value: Any = 0) -> Int64:  # noqa: N802
    return Int64(_integer(value))


def NumberInt(value: Any = 0) -> int:  # noqa: N802
    return _integer(value)


def NumberDecimal(value: Any = "0") -> Decimal128:  # noqa: N802
    try:
        return Decimal128(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidArgumentError(f"Invalid decimal: {value}") from None
