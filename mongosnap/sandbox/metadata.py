"""
Static metadata extraction for query strings.

``extract_metadata`` is a regex scan, not a parser: names inside string
literals or comments are picked up, and collections addressed through
variables are missed. Its result feeds auditing and history only.

``find_forbidden_operations`` backs the operation policy, so it walks the
parsed query instead.
"""

from __future__ import annotations

import ast
import re

from mongosnap.sandbox.compiler import normalize_query
from mongosnap.sandbox.models import UNKNOWN, QueryMetadata

_OPERATION = r"([a-zA-Z][a-zA-Z0-9_]*)"

# group 1 is the collection, group 2 the operation
COLLECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    # db.users.find(
    re.compile(r"\bdb\.([a-zA-Z_][a-zA-Z0-9_]*)\s*\.\s*" + _OPERATION + r"\s*\("),
    # db.getCollection("users").find(
    re.compile(
        r"\bdb\.getCollection\s*\(\s*['\"`]([^'\"`]+)['\"`]\s*\)\s*\.\s*"
        + _OPERATION
        + r"\s*\("
    ),
    # db.collection("users").find(
    re.compile(
        r"\bdb\.collection\s*\(\s*['\"`]([^'\"`]+)['\"`]\s*\)\s*\.\s*"
        + _OPERATION
        + r"\s*\("
    ),
)

DATABASE_OPERATION_PATTERN = re.compile(r"\bdb\.([a-zA-Z][a-zA-Z0-9_]*)\s*\(")

_COLLECTION_ACCESSORS = frozenset({"getCollection", "collection"})
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_COMMAND_METHODS = frozenset({"runCommand", "run_command", "command", "adminCommand"})
_MAPPING_CONSTRUCTORS = frozenset({"dict", "Object"})


def extract_metadata(query: str) -> QueryMetadata:
    """Return the collections and operations a query string refers to."""
    # dicts keep first-seen order so the primary values are stable
    collections: dict[str, None] = {}
    operations: dict[str, None] = {}

    for pattern in COLLECTION_PATTERNS:
        for match in pattern.finditer(query):
            collections.setdefault(match.group(1), None)
            operations.setdefault(match.group(2), None)

    for match in DATABASE_OPERATION_PATTERN.finditer(query):
        name = match.group(1)
        if name not in _COLLECTION_ACCESSORS:
            operations.setdefault(name, None)

    return QueryMetadata(
        collections=frozenset(collections),
        operations=frozenset(operations),
        primary_collection=next(iter(collections), UNKNOWN),
        primary_operation=next(iter(operations), UNKNOWN),
        has_multiple_collections=len(collections) > 1,
        has_multiple_operations=len(operations) > 1,
    )


def _aliases(name: str) -> set[str]:
    return {name, _CAMEL_BOUNDARY.sub("_", name).lower()}


def _string(node: ast.AST | None) -> str | None:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    return None


def referenced_operations(tree: ast.AST) -> set[str]:
    """
    Names a parsed query could invoke as an operation or server command.

    Collects every attribute name (``f = db.users.drop`` counts as much as a
    call), every string dict key and ``dict(...)`` keyword, and the string
    command given to ``runCommand``/``command``.
    """
    names: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute):
            names.add(node.attr)
        elif isinstance(node, ast.Dict):
            names.update(key for key in map(_string, node.keys) if key is not None)
        elif isinstance(node, ast.Call):
            func = node.func
            if isinstance(func, ast.Name) and func.id in _MAPPING_CONSTRUCTORS:
                names.update(keyword.arg for keyword in node.keywords if keyword.arg)
            elif isinstance(func, ast.Attribute) and func.attr in _COMMAND_METHODS and node.args:
                command = _string(node.args[0])
                if command is not None:
                    names.add(command)
    return names


def find_forbidden_operations(query: str, forbidden: list[str] | tuple[str, ...]) -> list[str]:
    """
    Return the forbidden operations ``query`` refers to.

    A name counts under both its camelCase spelling and its snake_case alias,
    whether it is called, referenced as an attribute or sent as a command
    (``db.runCommand({"drop": "users"})``). ``dropIndex`` does not count as
    ``drop``. Queries that do not parse are scanned with regexes instead.
    """
    try:
        tree = ast.parse(normalize_query(query), mode="exec")
    except (SyntaxError, ValueError):
        tree = None
    referenced = referenced_operations(tree) if tree is not None else set()

    found: list[str] = []
    for name in forbidden:
        aliases = _aliases(name)
        if tree is not None:
            if aliases & referenced:
                found.append(name)
            continue
        names = "|".join(re.escape(alias) for alias in sorted(aliases))
        if re.search(r"\.\s*(?:" + names + r")\b", query) or re.search(
            r"['\"`](?:" + names + r")['\"`]\s*[:,)]", query
        ):
            found.append(name)
    return found
