"""Summaries and bounded samples of raw record sets.

Used on the sampling path, where the agent gets one look at the data
instead of querying it: ``summarize`` describes the full record set and
``sample`` picks a small, recency-biased subset to show alongside it.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import numpy as np
import pandas as pd

from data_ops.records import TimeSeriesRecord

# Hard ceiling on samples shown to the agent, whatever the caller asks for
MAX_SAMPLE_CAP = 30
# Most recent records always appended to a sample
RECENT_TAIL = 5
SAMPLE_VALUES_PER_COLUMN = 5
# Freshness score lost per hour of age of the newest record
FRESHNESS_DECAY_PER_HOUR = 2.0


@dataclass
class ColumnInfo:
    name: str
    type: str
    null_count: int
    unique_count: int
    sample_values: list[Any] = field(default_factory=list)


@dataclass
class Statistics:
    count: int
    mean: Optional[float] = None
    median: Optional[float] = None
    min: Any = None
    max: Any = None
    std_dev: Optional[float] = None


@dataclass
class DataQualityMetrics:
    completeness: float
    timeliness: float

    @property
    def score(self) -> float:
        return round((self.completeness + self.timeliness) / 2, 1)

    @property
    def label(self) -> str:
        score = self.score
        if score >= 90:
            return "excellent"
        if score >= 70:
            return "good"
        if score >= 40:
            return "fair"
        return "poor"

    def describe(self) -> str:
        return (
            f"{self.label} ({round(self.completeness)}% complete, "
            f"{round(self.timeliness)}% fresh)"
        )


@dataclass
class DataSummary:
    row_count: int
    time_range: Optional[tuple[str, str]]
    columns: list[ColumnInfo]
    statistics: dict[str, Statistics]
    data_quality: DataQualityMetrics

    def to_dict(self) -> dict:
        out = asdict(self)
        out["data_quality"]["score"] = self.data_quality.score
        out["data_quality"]["label"] = self.data_quality.label
        return out


def _as_dict(record: TimeSeriesRecord | Mapping) -> dict:
    if isinstance(record, TimeSeriesRecord):
        return record.to_dict()
    return dict(record)


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, np.integer, np.floating)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (dict, list)):
        return "object"
    return type(value).__name__


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def _hashable(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return repr(value)
    return value


def freshness_score(latest: datetime, now: datetime) -> float:
    """100 for data that is current, minus 2 points per hour of age, floored at 0."""
    age_hours = (now - latest).total_seconds() / 3600
    return max(0.0, 100.0 - FRESHNESS_DECAY_PER_HOUR * age_hours)


def _column_stats(values: list[Any]) -> Statistics:
    numbers = [float(v) for v in values
               if isinstance(v, (int, float, np.integer, np.floating))
               and not isinstance(v, bool) and not _is_null(v)]
    if not numbers:
        return Statistics(count=0)
    arr = np.sort(np.asarray(numbers, dtype=float))
    return Statistics(
        count=len(arr),
        mean=float(arr.mean()),
        median=float(arr[len(arr) // 2]),
        min=float(arr[0]),
        max=float(arr[-1]),
        std_dev=float(arr.std()),
    )


def summarize(
    records: Sequence[TimeSeriesRecord | Mapping],
    now: Optional[datetime] = None,
    timestamp_field: str = "timestamp",
) -> DataSummary:
    """Describe *records*: size, time span, per-field profile and data quality."""
    if not records:
        return DataSummary(
            row_count=0,
            time_range=None,
            columns=[],
            statistics={},
            data_quality=DataQualityMetrics(completeness=0.0, timeliness=0.0),
        )

    now = now or datetime.now(timezone.utc)
    rows = [_as_dict(r) for r in records]
    names: list[str] = []
    for row in rows:
        for key in row:
            if key not in names:
                names.append(key)

    columns: list[ColumnInfo] = []
    statistics: dict[str, Statistics] = {}
    null_fields = 0
    for name in names:
        present = [row.get(name) for row in rows]
        values = [v for v in present if not _is_null(v)]
        null_fields += len(rows) - len(values)
        first_type = _type_name(values[0]) if values else "null"
        columns.append(ColumnInfo(
            name=name,
            type=first_type,
            null_count=len(rows) - len(values),
            unique_count=len({_hashable(v) for v in values}),
            sample_values=values[:SAMPLE_VALUES_PER_COLUMN],
        ))
        if first_type == "number":
            statistics[name] = _column_stats(values)

    timestamps = pd.to_datetime(
        pd.Series([row.get(timestamp_field) for row in rows]), utc=True, errors="coerce", format="ISO8601"
    ).dropna()
    if timestamps.empty:
        time_range = None
        timeliness = 0.0
    else:
        earliest, latest = timestamps.min(), timestamps.max()
        time_range = (earliest.isoformat(), latest.isoformat())
        timeliness = freshness_score(latest.to_pydatetime(), now)

    total_fields = len(rows) * len(names)
    completeness = (total_fields - null_fields) / total_fields * 100 if total_fields else 0.0

    return DataSummary(
        row_count=len(rows),
        time_range=time_range,
        columns=columns,
        statistics=statistics,
        data_quality=DataQualityMetrics(completeness=completeness, timeliness=timeliness),
    )


def sample(records: Sequence, max_samples: int) -> list:
    """Deterministic stride sample of *records* with a recency tail.

    Records are assumed to be in time order. With ``cap = min(max_samples,
    30)``, every ``len // cap``-th record is taken from index 0, then the
    newest few records are appended. The result holds exactly ``cap``
    records (or all of them when there are no more than *max_samples*) and
    always ends with the newest record.
    """
    n = len(records)
    if n <= max_samples:
        return list(records)

    cap = min(max_samples, MAX_SAMPLE_CAP)
    if cap <= 0:
        return []
    stride = max(1, n // cap)
    tail_count = min(RECENT_TAIL, cap)
    tail_start = n - tail_count

    # Strided picks that do not overlap the tail, leaving room for it
    picks = [i for i in range(0, tail_start, stride)][: cap - tail_count]
    indices = picks + list(range(tail_start, n))
    return [records[i] for i in indices]
