"""
Natural-language to query generation.

Wraps an OpenAI-compatible chat completion API. The generated text is
untrusted: callers run it through the same validation as hand-written
queries.
"""

from __future__ import annotations

import ast
import re

import openai
from openai import AsyncOpenAI
from structlog import get_logger

from mongosnap.config import OpenAIConfig, get_settings
from mongosnap.connections.schema import DatabaseSchema
from mongosnap.sandbox.compiler import normalize_query

logger = get_logger()

_FENCE = re.compile(r"```[a-zA-Z]*[ \t]*\n?")
_QUERY_START = re.compile(r"^(db\.|await\s|return\s|[A-Za-z_][A-Za-z0-9_]*\s*=[^=])")
_SHELL_HELPERS = re.compile(r"\b(printjson|forEach|getCollectionNames)\s*\(|^\s*show\s", re.MULTILINE)
_INVALID_VALUES = re.compile(r"\b(undefined|NaN)\b")

SYSTEM_PROMPT = "You convert natural language requests into MongoDB queries. Reply with the query only."

QUERY_RULES = """\
Requirements:
1. Return ONLY the query, no explanations, no markdown, no code blocks.
2. Queries are Python syntax against a `db` object with mongo shell method names.
3. Use double quotes for strings and quote every key, including operators: {"$gt": 5}.
4. Use True, False and None (true, false and null are also accepted).
5. Use ObjectId("..."), Date("YYYY-MM-DD"), ISODate("...") for typed values.
6. Cursor methods are not chainable: pass sort=[("field", 1)], limit=N, skip=N as keyword arguments.
7. Prefer a single aggregation pipeline ($match, $lookup, $group, $project) over loops with several queries.
8. Several statements are allowed; use `await` for intermediate results and end with the expression to return.
9. NEVER use shell helpers: printjson(), forEach(), getCollectionNames(), show ...
10. If a collection name contains dots, spaces or special characters use db.getCollection("name").

Examples:
- "Find all users" -> db.users.find({})
- "Find active users" -> db.users.find({"status": "active"})
- "Find users created this year" -> db.users.find({"createdAt": {"$gte": Date("2024-01-01")}})
- "Ten newest orders" -> db.orders.find({}, sort=[("createdAt", -1)], limit=10)
- "Insert a new user" -> db.users.insertOne({"name": "John Doe", "email": "john@example.com", "createdAt": Date()})
- "Activate a user" -> db.users.updateOne({"_id": ObjectId("...")}, {"$set": {"status": "active"}})
- "Count total users" -> db.users.countDocuments({})
- "Total sales by category" -> db.orders.aggregate([{"$group": {"_id": "$category", "total": {"$sum": "$amount"}}}])
- "Orders with customer names" -> db.orders.aggregate([{"$lookup": {"from": "users", "localField": "userId", "foreignField": "_id", "as": "user"}}, {"$unwind": "$user"}, {"$project": {"amount": 1, "customerName": "$user.name"}}])
- "Unique index on username" -> db.users.createIndex({"username": 1}, {"unique": True})
- "Orders of the newest user" ->
  user = await db.users.findOne({}, sort=[("createdAt", -1)])
  db.orders.find({"userId": user["_id"]})
"""


class QueryGenerationError(Exception):
    """The model could not be reached or returned no usable query."""


def build_schema_context(schema: DatabaseSchema | None) -> str:
    """Describe the database for the prompt."""
    if schema is None or not schema.collections:
        return ""

    lines = ["Database Schema Context:", f"Database: {schema.database_name}", ""]
    dotted = [c.name for c in schema.collections if "." in c.name or " " in c.name]
    if dotted:
        lines.append("These collections MUST be accessed with db.getCollection():")
        lines.extend(f'  - "{name}" -> db.getCollection("{name}")' for name in dotted)
        lines.append("")

    for collection in schema.collections:
        suffix = " (REQUIRES getCollection)" if collection.name in dotted else ""
        lines.append(f"Collection: {collection.name}{suffix}")
        lines.append(f"Document Count: {collection.count}")
        if collection.fields:
            lines.append("Fields:")
            lines.extend(f"  - {f.name} ({f.type})" for f in collection.fields)
        lines.append("")

    lines.append("Use the actual field names and types from the schema above.")
    return "\n".join(lines)


def build_prompt(natural_language: str, schema: DatabaseSchema | None = None) -> str:
    parts = [
        "Convert the following natural language request into a MongoDB query.",
        f'Natural Language Request: "{natural_language}"',
        QUERY_RULES,
    ]
    context = build_schema_context(schema)
    if context:
        parts.append(context)
    parts.append(f'Generate the query for: "{natural_language}"\n\nQuery:')
    return "\n\n".join(parts)


def _parses(lines: list[str]) -> bool:
    try:
        ast.parse(normalize_query("\n".join(lines)))
    except SyntaxError:
        return False
    return True


def parse_response(text: str) -> str:
    """
    Extract the query from a model reply.

    Removes markdown fences, skips prose before the first query line and
    drops trailing lines until the remainder parses.

    Raises:
        QueryGenerationError: No query was found or it uses unsupported constructs.
    """
    cleaned = _FENCE.sub("", (text or "").strip())
    lines = cleaned.splitlines()

    start = next(
        (i for i, line in enumerate(lines) if _QUERY_START.match(line.strip())),
        None,
    )
    if start is None:
        raise QueryGenerationError("No MongoDB query found in response")

    candidate = [line.rstrip() for line in lines[start:]]
    while candidate and not _parses(candidate):
        candidate.pop()
    query = "\n".join(candidate).strip().rstrip(";").rstrip()
    if not query:
        raise QueryGenerationError("Generated response is not a valid query")

    if _SHELL_HELPERS.search(query):
        raise QueryGenerationError("Generated query uses mongo shell helpers that are not supported")
    if _INVALID_VALUES.search(query):
        raise QueryGenerationError("Generated query contains invalid values")
    if "db." not in query:
        raise QueryGenerationError("Generated response does not look like a MongoDB query")
    return query


class QueryGenerator:
    """
    Natural-language query generator over ``AsyncOpenAI``.

    Usage::

        generator = QueryGenerator()
        query = await generator.generate("count active users", schema)
    """

    def __init__(
        self,
        config: OpenAIConfig | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._config = config or get_settings().openai
        self._client = client
        if self._client is None and self._config.api_key:
            self._client = AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.base_url,
                timeout=self._config.timeout,
                max_retries=self._config.max_retries,
            )

    @property
    def available(self) -> bool:
        return self._client is not None

    async def _complete(self, prompt: str, max_tokens: int | None = None) -> str:
        if self._client is None:
            raise QueryGenerationError("OpenAI API key is not configured")
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens or self._config.max_tokens,
                temperature=self._config.temperature,
            )
        except openai.RateLimitError as e:
            raise QueryGenerationError("Query generation rate limit exceeded - try again later") from e
        except openai.APITimeoutError as e:
            raise QueryGenerationError("Query generation request timed out - try again") from e
        except openai.APIError as e:
            logger.error("Query generation request failed", error=str(e))
            raise QueryGenerationError(f"Failed to generate query: {e}") from e

        if not response.choices:
            raise QueryGenerationError("Empty response from the model")
        return response.choices[0].message.content or ""

    async def generate(self, natural_language: str, schema: DatabaseSchema | None = None) -> str:
        """Generate a query for ``natural_language``, optionally guided by ``schema``."""
        logger.info(
            "Generating query",
            has_schema=schema is not None,
            collections=len(schema.collections) if schema else 0,
        )
        text = await self._complete(build_prompt(natural_language, schema))
        query = parse_response(text)
        logger.debug("Generated query", query=query)
        return query

    async def explain(self, query: str, natural_language: str = "") -> str:
        """Short plain-language explanation of what ``query`` does."""
        prompt = (
            "Explain this MongoDB query in simple terms:\n\n"
            f"Query: {query}\n"
            f'Original Request: "{natural_language}"\n\n'
            "Say what operation it performs, what data it affects, which filters apply "
            "and what the result will be. Keep it under 100 words."
        )
        explanation = await self._complete(prompt, max_tokens=300)
        return explanation.strip()
