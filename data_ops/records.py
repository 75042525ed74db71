"""Time-series record exchanged with the data sources."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional


@dataclass
class TimeSeriesRecord:
    """One value of one path at one instant.

    ``value`` may be a scalar or a structured payload (e.g. a position
    ``{"latitude": ..., "longitude": ...}``).
    """
    timestamp: str
    path: str
    value: Any
    context: str = "vessels.self"
    source: str = "unknown"
    source_label: Optional[str] = None
    aggregation_method: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)
