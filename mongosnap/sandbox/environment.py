"""
Safe globals available to query code alongside the execution context.

Everything here is listed by name. Nothing is copied from the host
``builtins`` module wholesale.
"""

from __future__ import annotations

import math
import random
import re
from types import SimpleNamespace
from typing import Any, Awaitable, Callable

from bson import json_util
from structlog import get_logger

from mongosnap.sandbox.compiler import CHECKPOINT, PAUSE

QUERY_LOG_PREFIX = "[QUERY]"
MAX_RANGE_LENGTH = 1_000_000

_NAN = float("nan")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:Infinity|\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?))")
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def parse_int(value: Any, radix: int = 10) -> int | float:
    """JavaScript ``parseInt``: leading digits in ``radix``, else NaN."""
    text = str(value).strip().lower()
    sign = -1 if text.startswith("-") else 1
    text = text.lstrip("+-")
    if radix == 16 and text.startswith("0x"):
        text = text[2:]
    valid = _DIGITS[:radix]
    digits = ""
    for char in text:
        if char not in valid:
            break
        digits += char
    return sign * int(digits, radix) if digits else _NAN


def parse_float(value: Any) -> float:
    """JavaScript ``parseFloat``: leading float literal, else NaN."""
    match = _FLOAT_PREFIX.match(str(value))
    if not match:
        return _NAN
    return float(match.group(1).replace("Infinity", "inf"))


def to_number(value: Any = 0) -> int | float:
    """JavaScript ``Number`` coercion."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text.replace("Infinity", "inf"))
        except ValueError:
            return _NAN
    return _NAN


def is_nan(value: Any) -> bool:
    number = to_number(value)
    return isinstance(number, float) and math.isnan(number)


def is_finite(value: Any) -> bool:
    number = to_number(value)
    return not (isinstance(number, float) and (math.isnan(number) or math.isinf(number)))


def _stringify(value: Any, indent: int | None = None) -> str:
    return json_util.dumps(value, indent=indent, json_options=json_util.RELAXED_JSON_OPTIONS)


def _parse(text: str) -> Any:
    return json_util.loads(text)


def make_console(prefix: str = QUERY_LOG_PREFIX) -> SimpleNamespace:
    """Logging shim standing in for ``console``; output is tagged with ``prefix``."""
    log = get_logger().bind(prefix=prefix)

    def _emit(method: Callable[..., Any]) -> Callable[..., None]:
        def write(*args: Any) -> None:
            method(" ".join(str(arg) for arg in args))

        return write

    return SimpleNamespace(
        log=_emit(log.info),
        info=_emit(log.info),
        warn=_emit(log.warning),
        error=_emit(log.error),
        debug=_emit(log.debug),
    )


JSON = SimpleNamespace(stringify=_stringify, parse=_parse, dumps=_stringify, loads=_parse)

Math = SimpleNamespace(
    **{name: getattr(math, name) for name in dir(math) if not name.startswith("_")},
    PI=math.pi,
    E=math.e,
    abs=abs,
    max=max,
    min=min,
    round=round,
    random=random.random,
)

SAFE_BUILTINS: dict[str, Any] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "chr": chr,
    "dict": dict,
    "divmod": divmod,
    "enumerate": enumerate,
    "filter": filter,
    "float": float,
    "frozenset": frozenset,
    "int": int,
    "isinstance": isinstance,
    "len": len,
    "list": list,
    "map": map,
    "max": max,
    "min": min,
    "next": next,
    "ord": ord,
    "pow": pow,
    "repr": repr,
    "reversed": reversed,
    "round": round,
    "set": set,
    "slice": slice,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "zip": zip,
    "Exception": Exception,
    "ValueError": ValueError,
    "TypeError": TypeError,
    "KeyError": KeyError,
    "IndexError": IndexError,
    "ZeroDivisionError": ZeroDivisionError,
}

SAFE_GLOBALS: dict[str, Any] = {
    "JSON": JSON,
    "Math": Math,
    "parseInt": parse_int,
    "parseFloat": parse_float,
    "isNaN": is_nan,
    "isFinite": is_finite,
    "Array": list,
    "Object": dict,
    "String": str,
    "Number": to_number,
    "Boolean": bool,
    # JSON-style literals emitted by generators
    "null": None,
    "true": True,
    "false": False,
}


def bounded_range(limit: int = MAX_RANGE_LENGTH) -> Callable[..., range]:
    """``range`` that refuses to describe more than ``limit`` items."""

    def range_(*args: int) -> range:
        values = range(*args)
        try:
            size = len(values)
        except OverflowError:
            size = limit + 1
        if size > limit:
            raise ValueError(f"range() is limited to {limit} items")
        return values

    return range_


def build_namespace(
    bindings: dict[str, Any],
    checkpoint: Callable[[], None],
    pause: Callable[[], Awaitable[None]],
    *,
    log_prefix: str = QUERY_LOG_PREFIX,
    max_range_length: int = MAX_RANGE_LENGTH,
) -> dict[str, Any]:
    """Assemble the complete global namespace for one execution."""
    console = make_console(log_prefix)
    namespace: dict[str, Any] = {
        "__builtins__": {
            **SAFE_BUILTINS,
            "print": console.log,
            "range": bounded_range(max_range_length),
        },
        CHECKPOINT: checkpoint,
        PAUSE: pause,
        "console": console,
    }
    namespace.update(SAFE_GLOBALS)
    namespace.update(bindings)
    return namespace
