"""Client for the historical values REST endpoint.

Request::

    GET <history_api_url>?paths=a.b,c.d:max&from=<iso>&to=<iso>[&resolution=<ms>]

Response::

    {"context": ..., "range": ...,
     "values": [{"path": "a.b", "method": "average"}, ...],
     "data": [[timestamp, v1, v2, ...], ...]}

Each data row fans out into one ``TimeSeriesRecord`` per value column.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import requests

import config
from agent.logging import log_error, tagged
from data_ops.http_utils import request_with_retry
from data_ops.records import TimeSeriesRecord

logger = logging.getLogger("bosun")

MAX_ROWS = 10_000
MAX_VALUE_COLUMNS = 20
DEFAULT_LOOKBACK = timedelta(hours=48)
# The endpoint averages by default, so "average" is never sent explicitly
DEFAULT_AGGREGATION = "average"


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def build_paths_param(data_path: str, aggregation: Optional[str] = None) -> str:
    """Comma-separated path list, each suffixed with ``:<aggregation>`` when set."""
    paths = [p.strip() for p in data_path.split(",") if p.strip()]
    if aggregation and aggregation != DEFAULT_AGGREGATION:
        paths = [f"{p}:{aggregation}" for p in paths]
    return ",".join(paths)


def parse_history_payload(payload: dict, context: str) -> list[TimeSeriesRecord]:
    """Turn a history response body into records, bounded in rows and columns."""
    data = payload.get("data")
    values = payload.get("values")
    if not isinstance(data, list) or not isinstance(values, list):
        return []

    records: list[TimeSeriesRecord] = []
    max_cols = min(len(values), MAX_VALUE_COLUMNS)
    for row in data[:MAX_ROWS]:
        if not isinstance(row, list) or len(row) < 2:
            continue
        timestamp = row[0]
        for col in range(1, min(len(row), max_cols + 1)):
            info = values[col - 1] if isinstance(values[col - 1], dict) else {}
            method = info.get("method")
            records.append(TimeSeriesRecord(
                timestamp=timestamp,
                path=info.get("path") or "unknown",
                value=row[col],
                context=context,
                source="rest-api",
                source_label=f"REST API ({method or 'default'})",
                aggregation_method=method,
            ))
    return records


class HistoryClient:
    """Fetches historical values for the sampling analysis path."""

    def __init__(self, base_url: Optional[str] = None, context: Optional[str] = None,
                 timeout: float = 30):
        self.base_url = base_url or config.HISTORY_API_URL
        self.context = context or config.SELF_CONTEXT
        self.timeout = timeout

    def fetch_blocking(
        self,
        data_path: str,
        time_range: Optional[tuple[datetime, datetime]] = None,
        aggregation: Optional[str] = None,
        resolution: Optional[str] = None,
    ) -> list[TimeSeriesRecord]:
        """Fetch records; on any transport or payload failure log and return ``[]``."""
        if time_range:
            start, end = time_range
        else:
            end = datetime.now(timezone.utc)
            start = end - DEFAULT_LOOKBACK
        params = {
            "paths": build_paths_param(data_path, aggregation),
            "from": _iso(start),
            "to": _iso(end),
        }
        if resolution and str(resolution).strip():
            params["resolution"] = str(resolution).strip()

        logger.debug(f"[History] GET {self.base_url} paths={params['paths']}",
                     extra=tagged("history_fetch"))
        try:
            resp = request_with_retry(self.base_url, timeout=self.timeout, params=params)
            payload = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            log_error(f"History fetch failed for {data_path}", exc=e,
                      context={"url": self.base_url, "paths": params["paths"]})
            return []

        records = parse_history_payload(payload if isinstance(payload, dict) else {}, self.context)
        logger.debug(f"[History] Loaded {len(records)} records for {params['paths']}")
        return records

    async def fetch(self, data_path: str, time_range=None, aggregation=None, resolution=None) -> list[TimeSeriesRecord]:
        return await asyncio.to_thread(
            self.fetch_blocking, data_path, time_range, aggregation, resolution
        )
