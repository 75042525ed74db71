"""Query guard — repair and validate agent-generated SQL before execution.

Two passes, in order:

1. **Column correction.** Structured paths (position, attitude, coordinate,
   navigation.location) store their payload in ``value_json``; the agent
   often writes the scalar ``value`` column instead. When the query touches
   such a path, standalone ``value`` identifiers are rewritten to
   ``value_json``. Qualified columns (``value_json``, ``value_latitude``)
   are never touched, so the rewrite is idempotent.

2. **Read-only check.** The query must start with ``SELECT`` or ``WITH`` and
   must not contain any denylisted keyword anywhere. The keyword check is a
   plain case-insensitive substring match, so a query that merely mentions
   ``UPDATE`` inside a string literal or in a column such as ``created_at``
   is rejected as well.
"""

import re

from agent.errors import QueryValidationError

READ_ONLY_PREFIXES = ("SELECT", "WITH")
DENYLIST = ("DROP", "DELETE", "UPDATE", "INSERT", "CREATE", "ALTER", "TRUNCATE")

# Patterns that mark a query as touching a structured-value path
_STRUCTURED_PATH_PATTERNS = [
    # Parquet file paths in FROM clauses
    re.compile(r"FROM\s+['\"]*[^'\"]*/position/[^'\"]*['\"]", re.IGNORECASE),
    re.compile(r"FROM\s+['\"]*[^'\"]*/attitude/[^'\"]*['\"]", re.IGNORECASE),
    re.compile(r"FROM\s+['\"]*[^'\"]*/coordinate/[^'\"]*['\"]", re.IGNORECASE),
    re.compile(r"FROM\s+['\"]*[^'\"]*/navigation/position[^'\"]*['\"]", re.IGNORECASE),
    re.compile(r"FROM\s+['\"]*[^'\"]*/navigation/attitude[^'\"]*['\"]", re.IGNORECASE),
    re.compile(r"FROM\s+['\"]*[^'\"]*/navigation/location[^'\"]*['\"]", re.IGNORECASE),
    # Path column filters
    re.compile(r"WHERE.*path.*position", re.IGNORECASE | re.DOTALL),
    re.compile(r"WHERE.*path.*attitude", re.IGNORECASE | re.DOTALL),
    re.compile(r"WHERE.*path.*coordinate", re.IGNORECASE | re.DOTALL),
    # Dotted path mentions
    re.compile(r"navigation\.position", re.IGNORECASE),
    re.compile(r"navigation\.attitude", re.IGNORECASE),
    re.compile(r"navigation\.coordinate", re.IGNORECASE),
    re.compile(r"navigation\.location", re.IGNORECASE),
]

# ``value`` as a whole identifier: not value_json, not signalk_value
_BARE_VALUE = re.compile(r"\bvalue\b(?!_|\w)", re.IGNORECASE)

_STRUCTURED_PATH_WORDS = ("position", "attitude", "coordinate", "navigation.location")


def value_column_for_path(path: str) -> str:
    """Return the column that holds the payload for a dotted data path."""
    if any(word in path for word in _STRUCTURED_PATH_WORDS):
        return "value_json"
    return "value"


def touches_structured_path(sql: str) -> bool:
    return any(p.search(sql) for p in _STRUCTURED_PATH_PATTERNS)


def correct_column_usage(sql: str) -> str:
    """Rewrite bare ``value`` to ``value_json`` for structured-path queries."""
    if not touches_structured_path(sql):
        return sql
    return _BARE_VALUE.sub("value_json", sql)


def check_read_only(sql: str) -> None:
    """Raise ``QueryValidationError`` unless *sql* is a read-only statement."""
    normalized = sql.strip().upper()
    # Denylist first so the error names the offending keyword
    for keyword in DENYLIST:
        if keyword in normalized:
            raise QueryValidationError(
                f"Dangerous SQL keyword '{keyword}' is not allowed", keyword=keyword
            )
    if not normalized.startswith(READ_ONLY_PREFIXES):
        raise QueryValidationError("Only SELECT and WITH queries are allowed")


def validate_and_correct(raw_query: str) -> str:
    """Return the corrected query, or raise ``QueryValidationError``."""
    corrected = correct_column_usage(raw_query)
    check_read_only(corrected)
    return corrected
