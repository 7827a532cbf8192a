"""Natural-language query generation."""

from .generator import QueryGenerationError, QueryGenerator, build_prompt, parse_response

__all__ = ["QueryGenerationError", "QueryGenerator", "build_prompt", "parse_response"]
