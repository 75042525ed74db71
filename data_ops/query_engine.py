"""DuckDB query engine over the parquet tree.

Parquet files are laid out as::

    <parquet_root>/vessels/<vessel id>/<path as dirs>/*.parquet

and are addressed directly by glob in ``FROM`` clauses, e.g.
``SELECT * FROM '<root>/vessels/*/navigation/position/*.parquet'``.

All calls are blocking; async callers go through ``execute()`` /
``load_regimen_states()`` which hop to a worker thread. Each query runs on
its own cursor of one shared in-memory connection.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import duckdb
import numpy as np

import config
from agent.errors import ToolExecutionError
from data_ops.query_guard import validate_and_correct

logger = logging.getLogger("bosun")

# Row caps applied to every result set
MAX_ROWS = 1000
REDUCED_MAX_ROWS = 500

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.\-]+$")
_SAFE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def narrow_value(value: Any) -> Any:
    """Convert engine-native values to plain JSON-friendly Python values."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return None if value != value else value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, dict):
        return {str(k): narrow_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [narrow_value(v) for v in value]
    return str(value)


def _cap_rows(rows: list) -> list:
    """Keep at most 1000 rows, or 500 when the raw result ran past 1000."""
    max_rows = REDUCED_MAX_ROWS if len(rows) > MAX_ROWS else MAX_ROWS
    return rows[:max_rows]


def _check_iso(label: str, value: str) -> str:
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        raise ToolExecutionError("find_episodes", f"Invalid {label} timestamp: {value!r}")
    return value


class DuckDBQueryEngine:
    """Read-only query access to the parquet tree."""

    def __init__(self, parquet_root: Optional[str] = None, timestamp_column: Optional[str] = None):
        self.parquet_root = str(Path(parquet_root or config.PARQUET_ROOT).expanduser())
        self.timestamp_column = timestamp_column or config.TIMESTAMP_COLUMN
        if not _SAFE_IDENTIFIER.match(self.timestamp_column):
            raise ValueError(f"Invalid timestamp column name: {self.timestamp_column!r}")
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        with self._lock:
            if self._conn is None:
                self._conn = duckdb.connect(":memory:")
            return self._conn.cursor()

    def close(self) -> None:
        """Close the DuckDB connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ------------------------------------------------------------------
    # Blocking API
    # ------------------------------------------------------------------

    def _fetch(self, sql: str, params: Optional[list] = None, limit: Optional[int] = None) -> tuple[list[str], list[tuple]]:
        cursor = self._cursor()
        try:
            result = cursor.execute(sql, params or [])
            columns = [desc[0] for desc in result.description] if result.description else []
            rows = result.fetchmany(limit) if limit else result.fetchall()
        finally:
            cursor.close()
        return columns, rows

    def run_query(self, sql: str) -> list[dict]:
        """Validate, execute and cap a query; rows come back as plain dicts.

        Raises ``QueryValidationError`` for unsafe SQL and
        ``ToolExecutionError`` when the engine rejects the query.
        """
        corrected = validate_and_correct(sql)
        if corrected != sql:
            logger.debug(f"Corrected query: {corrected}")
        try:
            # One row past the cap tells us whether to apply the reduced cap
            columns, rows = self._fetch(corrected, limit=MAX_ROWS + 1)
        except duckdb.Error as e:
            raise ToolExecutionError("run_query", f"Database query failed: {e}") from e
        return [
            {col: narrow_value(v) for col, v in zip(columns, row)}
            for row in _cap_rows(rows)
        ]

    def regimen_glob(self, regimen: str) -> str:
        if not _SAFE_NAME.match(regimen):
            raise ToolExecutionError("find_episodes", f"Invalid regimen name: {regimen!r}")
        return f"{self.parquet_root}/vessels/*/commands/{regimen}/*.parquet"

    def regimen_states(self, regimen: str, time_range: Optional[dict] = None) -> list[tuple[Any, Any]]:
        """Return ``(timestamp, state)`` pairs for a regimen's command series."""
        ts = self.timestamp_column
        sql = f"SELECT {ts}, value FROM read_parquet('{self.regimen_glob(regimen)}', union_by_name = true)"
        params: list = []
        if time_range and time_range.get("start") and time_range.get("end"):
            sql += f" WHERE {ts} >= ? AND {ts} <= ?"
            params = [
                _check_iso("start", time_range["start"]),
                _check_iso("end", time_range["end"]),
            ]
        sql += f" ORDER BY {ts}"
        try:
            _, rows = self._fetch(sql, params)
        except duckdb.Error as e:
            raise ToolExecutionError(
                "find_episodes", f"Could not load command states for {regimen}: {e}"
            ) from e
        return [(row[0], row[1]) for row in rows]

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def execute(self, sql: str) -> list[dict]:
        return await asyncio.to_thread(self.run_query, sql)

    async def load_regimen_states(self, regimen: str, time_range: Optional[dict] = None) -> list[tuple[Any, Any]]:
        return await asyncio.to_thread(self.regimen_states, regimen, time_range)
