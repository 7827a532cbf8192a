"""
Deny-list validation for query strings.

First layer of defense before the sandbox compiler:
  1. Rejects host-escape constructs by plain pattern match (no parsing)
  2. Collects every violation instead of stopping at the first
  3. Leaves await, loops and multi-statement code alone

The execution namespace and the compiler's AST guard refuse the same
capabilities independently, so a pattern bypass alone does not reach the host.
"""

from __future__ import annotations

import re

from mongosnap.sandbox.models import SecurityValidationResult

# (pattern, what it guards against)
DANGEROUS_PATTERNS: tuple[tuple[str, str], ...] = (
    (r"\brequire\s*\(", "dynamic module loading"),
    (r"\bprocess\.", "process object access"),
    (r"\bglobal\.", "global object access"),
    (r"\bFunction\s*\(", "Function constructor"),
    (r"\beval\s*\(", "eval()"),
    (r"\bsetTimeout\s*\(", "timer scheduling"),
    (r"\bsetInterval\s*\(", "timer scheduling"),
    (r"\bsetImmediate\s*\(", "timer scheduling"),
    (r"child_process", "child process spawning"),
    (r"\bfs\.", "filesystem access"),
    (r"\bos\.", "operating system access"),
    (r"__proto__", "prototype pollution"),
    (r"constructor\.constructor", "constructor access"),
    (r"\bimport\s*\(", "dynamic import"),
    # Python host equivalents
    (r"__import__", "dynamic module loading"),
    (r"(?m)^\s*import\s+[A-Za-z_]", "module import"),
    (r"(?m)^\s*from\s+[\w.]+\s+import\b", "module import"),
    (r"\bexec\s*\(", "exec()"),
    (r"\bcompile\s*\(", "code compilation"),
    (r"(?<![\w.])open\s*\(", "filesystem access"),
    (r"\b(?:globals|locals|vars)\s*\(", "namespace introspection"),
    (r"\b(?:getattr|setattr|delattr)\s*\(", "dynamic attribute access"),
    (r"\bsubprocess\b", "child process spawning"),
    (r"\bimportlib\b", "dynamic module loading"),
    (r"\bsys\.", "interpreter access"),
    (r"\bbreakpoint\s*\(", "debugger entry"),
    (r"__\w+__", "dunder attribute access"),
)


class SecurityChecker:
    """
    Pattern-based query pre-check.

    Every pattern is evaluated independently; the result lists all matches
    in declaration order.
    """

    def __init__(self, patterns: tuple[tuple[str, str], ...] | None = None) -> None:
        self._patterns = [
            (re.compile(pattern), pattern, reason)
            for pattern, reason in (patterns or DANGEROUS_PATTERNS)
        ]

    def validate(self, query: str) -> SecurityValidationResult:
        """Check a query string against the deny-list."""
        violations = [
            f"Potentially dangerous pattern detected: {reason} (/{source}/)"
            for compiled, source, reason in self._patterns
            if compiled.search(query)
        ]
        return SecurityValidationResult(is_valid=not violations, violations=violations)


_default_checker = SecurityChecker()


def validate_security(query: str) -> SecurityValidationResult:
    """Validate a query string with the default deny-list."""
    return _default_checker.validate(query)
