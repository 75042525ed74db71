"""Best-effort parsing of the agent's final answer text.

The sampling path asks the agent for a JSON object, but the agent is free
to answer in prose. ``parse_analysis_text`` extracts the outermost
``{...}`` span and decodes it; anything that fails to decode, or decodes to
something other than an object, falls back to a free-text answer whose
insights are the text's bullet points. It never raises.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Union

DEFAULT_CONFIDENCE = 0.8
DEFAULT_DATA_QUALITY = "Analysis completed"

_JSON_SPAN = re.compile(r"\{[\s\S]*\}")
_BULLET = re.compile(r"^[-*•]\s")
_NUMBERED = re.compile(r"^\d+\.\s")


@dataclass
class StructuredAnswer:
    analysis: str
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    anomalies: list[dict] = field(default_factory=list)
    confidence: float = DEFAULT_CONFIDENCE
    data_quality: str = DEFAULT_DATA_QUALITY


@dataclass
class FreeTextAnswer:
    analysis: str
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    anomalies: list[dict] = field(default_factory=list)
    confidence: float = DEFAULT_CONFIDENCE
    data_quality: str = DEFAULT_DATA_QUALITY


ParsedAnswer = Union[StructuredAnswer, FreeTextAnswer]


def extract_bullet_points(text: str) -> list[str]:
    """Lines starting with ``-``, ``*``, ``•`` or ``1.``, markers stripped."""
    points = []
    for line in text.splitlines():
        stripped = line.strip()
        if _BULLET.match(stripped):
            points.append(stripped[1:].strip())
        elif _NUMBERED.match(stripped):
            points.append(_NUMBERED.sub("", stripped, count=1).strip())
    return points


def clamp_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:
        return default
    return min(1.0, max(0.0, number))


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def _free_text(text: str) -> FreeTextAnswer:
    return FreeTextAnswer(analysis=text, insights=extract_bullet_points(text))


def parse_analysis_text(text: str) -> ParsedAnswer:
    """Parse *text* into a structured answer, or fall back to free text."""
    text = text or ""
    match = _JSON_SPAN.search(text)
    if not match:
        return _free_text(text)
    try:
        payload = json.loads(match.group(0))
    except ValueError:
        return _free_text(text)
    if not isinstance(payload, dict):
        return _free_text(text)

    analysis = payload.get("analysis")
    anomalies = payload.get("anomalies")
    return StructuredAnswer(
        analysis=analysis if isinstance(analysis, str) and analysis else text,
        insights=_string_list(payload.get("insights")),
        recommendations=_string_list(payload.get("recommendations")),
        anomalies=[a for a in anomalies if isinstance(a, dict)] if isinstance(anomalies, list) else [],
        confidence=clamp_confidence(payload.get("confidence")),
        data_quality=str(payload.get("dataQuality") or DEFAULT_DATA_QUALITY),
    )
