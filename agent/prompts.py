"""
System prompts and request prompts for the analysis agent.

Two prompt families:

- database access mode: a system prompt describing the parquet layout and
  the time window to focus on, followed by the analyst's request as the
  first user turn;
- sampling mode: one self-contained user prompt carrying the data
  summary, a sample of records and the JSON answer format.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Optional

import config

DEFAULT_LOOKBACK = timedelta(hours=6)

CONNECTION_TEST_PROMPT = (
    'Hello! Please respond with "Connection successful" to test the connection.'
)

_SYSTEM_PROMPT_TEMPLATE = """You are an expert marine data analyst with direct read-only access to a time-series database.
Today is {today} (UTC).

TIMESTAMPS:
- All timestamps in the database are UTC ISO 8601 strings ending in 'Z'.
- The timestamp column is `{ts}`.
- When reporting times to the user, say they are UTC.

DATA LAYOUT:
- Each data path is stored as parquet files under
  {root}/vessels/<vessel id>/<path with dots as slashes>/*.parquet
  e.g. {root}/vessels/*/navigation/speedOverGround/*.parquet
- Scalar paths keep their reading in the `value` column.
- Structured paths (position, attitude, coordinates) keep it in `value_json`,
  with some components also split out as `value_latitude`, `value_longitude`, ...
- Boolean command regimens live under {root}/vessels/*/commands/<regimen>/*.parquet
{time_guidance}

QUERYING:
- Only SELECT and WITH queries are accepted.
- Never fetch raw rows over long windows. Bucket and aggregate instead:
  SELECT strftime(date_trunc('hour', {ts}::TIMESTAMP), '%Y-%m-%dT%H:%M:%SZ') AS time_bucket,
         AVG(CAST(value AS DOUBLE)) AS avg_value,
         MAX(CAST(value AS DOUBLE)) AS max_value,
         MIN(CAST(value AS DOUBLE)) AS min_value,
         COUNT(*) AS record_count
  FROM '<path glob>'
  WHERE {ts} >= '<start>' AND {ts} <= '<end>' AND value IS NOT NULL
  GROUP BY time_bucket ORDER BY time_bucket
- Use date_trunc('minute', ...) for detail and date_trunc('hour', ...) for overviews.
- Results are capped at 1000 rows.

Explore what is available first, then give a complete narrative answer."""


def iso_utc(dt: datetime) -> str:
    """ISO 8601 in UTC with a ``Z`` suffix and no fractional seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def time_range_guidance(
    time_range: Optional[tuple[datetime, datetime]] = None,
    now: Optional[datetime] = None,
) -> str:
    """WHERE-clause guidance for the requested window or the default look-back."""
    ts = config.TIMESTAMP_COLUMN
    if time_range:
        start, end = (iso_utc(t) for t in time_range)
        return (
            f"\nANALYSIS SCOPE: Focus on data between {start} and {end}.\n"
            f"Always filter queries to this window:\n"
            f"WHERE {ts} >= '{start}' AND {ts} <= '{end}'"
        )
    now = now or datetime.now(timezone.utc)
    since = iso_utc(now - DEFAULT_LOOKBACK)
    return (
        "\nTIME RANGE FOCUS: No time range was given, so focus on the last 6 hours.\n"
        f"Always filter queries to recent data:\n"
        f"WHERE {ts} >= '{since}'"
    )


def get_system_prompt(
    time_range: Optional[tuple[datetime, datetime]] = None,
    parquet_root: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Return the database access system prompt with current date and window."""
    now = now or datetime.now(timezone.utc)
    return _SYSTEM_PROMPT_TEMPLATE.format(
        today=now.strftime("%Y-%m-%d"),
        ts=config.TIMESTAMP_COLUMN,
        root=parquet_root or config.PARQUET_ROOT,
        time_guidance=time_range_guidance(time_range, now),
    )


def build_request_prompt(custom_prompt: Optional[str], data_path: Optional[str] = None) -> str:
    """First user turn of a database access analysis."""
    request = custom_prompt or "Analyze the recorded data and provide insights"
    text = f"ANALYSIS REQUEST: {request}"
    if data_path:
        text += f"\nPrimary data path of interest: {data_path}"
    return text


# ---------------------------------------------------------------------------
# Sampling mode
# ---------------------------------------------------------------------------

_ANALYSIS_INSTRUCTIONS = {
    "summary": """ANALYSIS REQUEST: Provide a comprehensive summary of this data.
Focus on:
1. Overall trends and patterns
2. Operational insights
3. Performance indicators
4. Notable observations
5. Data quality assessment""",
    "anomaly": """ANALYSIS REQUEST: Detect anomalies and unusual patterns in this data.
Focus on:
1. Statistical outliers
2. Unusual temporal patterns
3. Operational anomalies
4. Safety concerns
5. Equipment irregularities

For each anomaly give the timestamp, value and expected range, severity
(low/medium/high), a description with potential cause, and a confidence level.""",
    "trend": """ANALYSIS REQUEST: Analyze trends in this data over time.
Focus on:
1. Temporal trends (increasing/decreasing/cyclical)
2. Operational patterns
3. Performance trends
4. Predictive insights

Give confidence levels and projections where appropriate.""",
    "correlation": """ANALYSIS REQUEST: Analyze how the included paths relate to each other.
Records carry a `path` field; compare paths over the same timestamps and
describe correlations, lags and likely causal links.""",
}

_RESPONSE_FORMAT = """RESPONSE FORMAT:
Answer with a JSON object of this shape:
{
  "analysis": "Main analysis text",
  "insights": ["insight1", "insight2"],
  "recommendations": ["recommendation1", "recommendation2"],
  "anomalies": [{"timestamp": "ISO8601", "value": "actual", "expectedRange": {"min": 0, "max": 100}, "severity": "high", "description": "...", "confidence": 0.9}],
  "confidence": 0.85,
  "dataQuality": "assessment of data quality"
}"""


def _analysis_instructions(analysis_type: str, custom_prompt: Optional[str]) -> str:
    if analysis_type == "custom":
        return (
            f"ANALYSIS REQUEST: {custom_prompt or 'Analyze this data'}\n\n"
            "Each record has a `path` field naming its source and, when an aggregation "
            "was applied, an `aggregation_method` field. Numeric readings are in `value`."
        )
    text = _ANALYSIS_INSTRUCTIONS.get(
        analysis_type,
        "ANALYSIS REQUEST: Analyze this data and provide relevant operational insights.",
    )
    if custom_prompt:
        text += f"\n\nAdditional instructions: {custom_prompt}"
    return text


def build_sampling_prompt(
    data_path: str,
    summary: dict,
    samples: list[dict],
    analysis_type: str = "summary",
    custom_prompt: Optional[str] = None,
) -> str:
    """Self-contained prompt for the single-call sampling analysis."""
    time_range = summary.get("time_range")
    if time_range:
        span = f"{time_range[0]} to {time_range[1]}"
    else:
        span = "unknown"
    quality = summary.get("data_quality") or {}

    return f"""You are an expert marine data analyst. Analyze the following recorded data.

DATA SUMMARY:
- Path: {data_path}
- Records: {summary.get('row_count', 0)} (showing sample of {len(samples)})
- Time Range: {span}
- Data Quality: {round(quality.get('completeness', 0))}% complete, {round(quality.get('timeliness', 0))}% fresh

STATISTICAL SUMMARY:
{json.dumps(summary.get('statistics', {}), indent=2, default=str)}

SAMPLE DATA:
{json.dumps(samples, indent=2, default=str)}

{_analysis_instructions(analysis_type, custom_prompt)}

{_RESPONSE_FORMAT}
"""
