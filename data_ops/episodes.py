"""Episode detection over boolean state series.

An episode is the interval during which a regimen's boolean state was on.
Boundaries are found by comparing each point with the one before it:

    start:  value is True  and the previous value is False or absent
    end:    value is False and the previous value is True

Each start is paired with the earliest end strictly after it, looked up in
the full set of ends. Pairing is done per start, independently of the
others, so when a series has two starts before the first end both starts
claim that same end. This matches how the regimen history has always been
reported; callers that need non-overlapping episodes must post-process.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

import numpy as np
import pandas as pd

DEFAULT_EPISODE_LIMIT = 10


class EpisodeStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Episode:
    regimen: str
    start_time: datetime
    end_time: Optional[datetime]
    status: EpisodeStatus
    duration_ms: Optional[int]
    paths: tuple[str, ...] = ()

    def __post_init__(self):
        if self.end_time is None:
            if self.status is not EpisodeStatus.ACTIVE or self.duration_ms is not None:
                raise ValueError("Episode without an end must be active with no duration")
            return
        if self.status is not EpisodeStatus.COMPLETED:
            raise ValueError("Episode with an end must be completed")
        expected = _millis_between(self.start_time, self.end_time)
        if self.duration_ms != expected or expected < 0:
            raise ValueError(
                f"Episode duration {self.duration_ms}ms does not match {expected}ms"
            )

    def to_dict(self) -> dict:
        return {
            "regimen": self.regimen,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "paths": list(self.paths),
        }


def _millis_between(start: datetime, end: datetime) -> int:
    return (end - start) // timedelta(milliseconds=1)


def _to_bool(value: Any) -> Optional[bool]:
    """Coerce a stored state value to True/False, or None when unknown."""
    if value is None:
        return None
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, np.integer)):
        return bool(value)
    if isinstance(value, (float, np.floating)):
        return None if math.isnan(value) else bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "on", "yes"):
            return True
        if lowered in ("false", "0", "off", "no"):
            return False
    return None


def _to_frame(series: Iterable[tuple[Any, Any]]) -> pd.DataFrame:
    df = pd.DataFrame(list(series), columns=["timestamp", "value"])
    if df.empty:
        return df
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True, format="ISO8601")
    # 1.0 on, 0.0 off, NaN unknown
    df["state"] = df["value"].map(_to_bool).map({True: 1.0, False: 0.0})
    return df.sort_values("timestamp", kind="mergesort").reset_index(drop=True)


def detect_boundaries(series: Iterable[tuple[Any, Any]]) -> tuple[pd.Series, pd.Series]:
    """Return ``(start_times, end_times)`` as ascending UTC timestamp series."""
    df = _to_frame(series)
    if df.empty:
        empty = pd.Series([], dtype="datetime64[ns, UTC]")
        return empty, empty

    current = df["state"].astype(float)
    previous = current.shift(1)
    # NaN compares unequal to everything, so unknown and absent both count as "not on"
    start_mask = (current == 1.0) & (previous != 1.0)
    end_mask = (current == 0.0) & (previous == 1.0)

    starts = df.loc[start_mask, "timestamp"].reset_index(drop=True)
    ends = df.loc[end_mask, "timestamp"].reset_index(drop=True)
    return starts, ends


def find_episodes(
    series: Iterable[tuple[Any, Any]],
    limit: Optional[int] = DEFAULT_EPISODE_LIMIT,
    regimen: str = "",
    paths: Iterable[str] = (),
) -> list[Episode]:
    """Convert a ``(timestamp, state)`` series into episodes, most recent first.

    Args:
        series: Points in any order; timestamps may be datetimes or ISO strings.
        limit: Maximum number of episodes returned (``None`` for all).
        regimen: Regimen name stamped on every episode.
        paths: Data paths associated with the regimen.
    """
    starts, ends = detect_boundaries(series)
    paths = tuple(paths)

    end_values = ends.dt.tz_localize(None).to_numpy(dtype="datetime64[ns]")
    episodes: list[Episode] = []
    for start in starts:
        start_key = np.datetime64(start.tz_localize(None).to_datetime64(), "ns")
        idx = int(np.searchsorted(end_values, start_key, side="right"))
        start_dt = start.to_pydatetime()
        if idx < len(end_values):
            end_dt = pd.Timestamp(end_values[idx]).tz_localize(timezone.utc).to_pydatetime()
            episodes.append(Episode(
                regimen=regimen,
                start_time=start_dt,
                end_time=end_dt,
                status=EpisodeStatus.COMPLETED,
                duration_ms=_millis_between(start_dt, end_dt),
                paths=paths,
            ))
        else:
            episodes.append(Episode(
                regimen=regimen,
                start_time=start_dt,
                end_time=None,
                status=EpisodeStatus.ACTIVE,
                duration_ms=None,
                paths=paths,
            ))

    episodes.sort(key=lambda e: e.start_time, reverse=True)
    if limit is not None:
        episodes = episodes[:limit]
    return episodes
