"""
Sandbox compiler for query code.

Turns a query string into a code object that defines ``__query__``, an
``async def`` whose body is the user's statements:

  * ``new Date(...)``-style constructor calls and ``//`` line comments from
    LLM output are normalized first
  * an AST guard rejects imports, class definitions, private or frame
    attributes and dunder names, whatever the deny-list already caught
  * a trailing bare expression becomes the return value
  * loop bodies, function bodies, lambdas and comprehensions get a deadline
    checkpoint so CPU-bound code still observes the timeout
"""

from __future__ import annotations

import ast
import re
from types import CodeType

from mongosnap.sandbox.errors import QuerySyntaxError, SecurityViolationError

QUERY_FUNCTION = "__query__"
CHECKPOINT = "__checkpoint__"
PAUSE = "__pause__"

CONSTRUCTOR_NAMES: tuple[str, ...] = (
    "Date",
    "ISODate",
    "ObjectId",
    "NumberLong",
    "NumberInt",
    "NumberDecimal",
    "Array",
    "Object",
    "String",
    "Number",
    "Boolean",
)

_NEW_CONSTRUCTOR = re.compile(r"\bnew\s+(" + "|".join(CONSTRUCTOR_NAMES) + r")\s*\(")
_LINE_COMMENT = re.compile(r"(?m)^(\s*)//")

# Attributes that reach frames, code objects or str.format's attribute lookup
UNSAFE_ATTRIBUTES: frozenset[str] = frozenset({
    "format",
    "format_map",
    "mro",
    "gi_frame",
    "gi_code",
    "gi_yieldfrom",
    "ag_frame",
    "ag_code",
    "ag_await",
    "cr_frame",
    "cr_code",
    "cr_await",
    "cr_origin",
    "f_back",
    "f_builtins",
    "f_code",
    "f_globals",
    "f_locals",
    "f_trace",
    "tb_frame",
    "tb_next",
})


def normalize_query(query: str) -> str:
    """Rewrite shell-style idioms that are not valid Python."""
    query = _NEW_CONSTRUCTOR.sub(r"\1(", query)
    return _LINE_COMMENT.sub(r"\1#", query)


class QueryGuard(ast.NodeVisitor):
    """Collect every construct the sandbox refuses to compile."""

    def __init__(self) -> None:
        self.violations: list[str] = []

    def _reject(self, node: ast.AST, reason: str) -> None:
        line = getattr(node, "lineno", None)
        self.violations.append(f"{reason} (line {line})" if line else reason)

    def visit_Import(self, node: ast.Import) -> None:
        self._reject(node, "import statements are not allowed")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._reject(node, "import statements are not allowed")

    def visit_Global(self, node: ast.Global) -> None:
        self._reject(node, "global declarations are not allowed")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self._reject(node, "nonlocal declarations are not allowed")

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._reject(node, "class definitions are not allowed")

    def visit_Yield(self, node: ast.Yield) -> None:
        self._reject(node, "generators are not allowed")

    def visit_YieldFrom(self, node: ast.YieldFrom) -> None:
        self._reject(node, "generators are not allowed")

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is None:
            self._reject(node, "bare except clauses are not allowed")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_") or node.attr in UNSAFE_ATTRIBUTES:
            self._reject(node, f"access to attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._reject(node, f"name '{node.id}' is not allowed")

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._check_function_name(node)
        self.generic_visit(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._check_function_name(node)
        self.generic_visit(node)

    def visit_arg(self, node: ast.arg) -> None:
        if node.arg.startswith("__"):
            self._reject(node, f"argument name '{node.arg}' is not allowed")
        self.generic_visit(node)

    def visit_MatchClass(self, node: ast.MatchClass) -> None:
        for attr in node.kwd_attrs:
            if attr.startswith("_") or attr in UNSAFE_ATTRIBUTES:
                self._reject(node, f"access to attribute '{attr}' is not allowed")
        self.generic_visit(node)

    def _check_function_name(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        if node.name.startswith("__"):
            self._reject(node, f"function name '{node.name}' is not allowed")


class _Checkpoints(ast.NodeTransformer):
    """
    Insert deadline checks into the wrapped query.

    Loop bodies at coroutine level start with ``await __pause__()``, which
    also hands control back to the event loop every few passes. Loops inside
    plain functions, function bodies, lambdas and comprehension clauses call
    ``__checkpoint__()``, which can only raise.
    """

    def __init__(self) -> None:
        self._coroutine_scope = [False]

    @staticmethod
    def _call(name: str) -> ast.Call:
        return ast.Call(func=ast.Name(id=name, ctx=ast.Load()), args=[], keywords=[])

    def _function(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> ast.AST:
        self._coroutine_scope.append(isinstance(node, ast.AsyncFunctionDef))
        self.generic_visit(node)
        self._coroutine_scope.pop()
        if node.name != QUERY_FUNCTION:
            node.body.insert(0, ast.copy_location(ast.Expr(value=self._call(CHECKPOINT)), node))
        return node

    def _loop(self, node: ast.For | ast.AsyncFor | ast.While) -> ast.AST:
        self.generic_visit(node)
        if self._coroutine_scope[-1]:
            check: ast.expr = ast.Await(value=self._call(PAUSE))
        else:
            check = self._call(CHECKPOINT)
        node.body.insert(0, ast.copy_location(ast.Expr(value=check), node))
        return node

    def visit_Lambda(self, node: ast.Lambda) -> ast.AST:
        self.generic_visit(node)
        # __checkpoint__() returns None, so the body's value is kept
        node.body = ast.BoolOp(op=ast.Or(), values=[self._call(CHECKPOINT), node.body])
        return node

    def visit_comprehension(self, node: ast.comprehension) -> ast.AST:
        self.generic_visit(node)
        node.ifs.insert(0, ast.UnaryOp(op=ast.Not(), operand=self._call(CHECKPOINT)))
        return node

    visit_FunctionDef = _function
    visit_AsyncFunctionDef = _function
    visit_For = _loop
    visit_AsyncFor = _loop
    visit_While = _loop


def parse_query(query: str, filename: str = "<query>") -> ast.Module:
    """Parse and guard a query, raising on syntax errors or blocked constructs."""
    try:
        tree = ast.parse(normalize_query(query), filename=filename, mode="exec")
    except SyntaxError as exc:
        raise QuerySyntaxError(exc.msg, exc.lineno) from None

    guard = QueryGuard()
    guard.visit(tree)
    if guard.violations:
        raise SecurityViolationError(guard.violations)
    return tree


def compile_query(query: str, filename: str = "<query>") -> CodeType:
    """Compile a query into a module defining the ``__query__`` coroutine function."""
    tree = parse_query(query, filename)
    body: list[ast.stmt] = list(tree.body) or [ast.Pass()]

    last = body[-1]
    if isinstance(last, ast.Expr):
        body[-1] = ast.copy_location(ast.Return(value=last.value), last)

    wrapper = ast.parse(f"async def {QUERY_FUNCTION}():\n    pass\n", filename=filename)
    wrapper.body[0].body = body  # type: ignore[attr-defined]
    wrapper = _Checkpoints().visit(wrapper)
    ast.fix_missing_locations(wrapper)

    try:
        return compile(wrapper, filename, "exec", dont_inherit=True)
    except SyntaxError as exc:
        raise QuerySyntaxError(exc.msg, exc.lineno) from None
