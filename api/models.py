"""Pydantic request/response schemas for the FastAPI backend."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


AnalysisType = Literal["summary", "anomaly", "trend", "correlation", "custom"]


# ---- Requests ----

class TimeRange(BaseModel):
    start: datetime
    end: datetime


class AnalyzeRequest(BaseModel):
    data_path: str = Field(default="", description="Data path (comma-separated for several) to analyze")
    analysis_type: AnalysisType = "custom"
    time_range: Optional[TimeRange] = None
    custom_prompt: Optional[str] = Field(default=None, description="Free-form question for the agent")
    context: dict[str, Any] = Field(default_factory=dict)
    aggregation_method: Optional[str] = Field(default=None, description="History aggregation, e.g. 'max' or 'sma'")
    resolution: Optional[str] = Field(default=None, description="History resolution in milliseconds")
    use_database_access: bool = Field(default=False, description="Run the multi-round tool loop instead of sampling")


class FollowUpRequest(BaseModel):
    conversation_id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)


class LiveUpdate(BaseModel):
    context: str = Field(default="vessels.self", description="Context such as 'vessels.self' or 'vessels.<id>'")
    path: str = Field(..., min_length=1, description="Dotted data path")
    value: Any = None
    timestamp: Optional[str] = None
    source: Optional[str] = None


class ConfigUpdate(BaseModel):
    config: dict[str, Any] = Field(..., description="Partial config to merge")


# ---- Responses ----

class AnalysisResult(BaseModel):
    id: str
    analysis: str
    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    anomalies: list[dict[str, Any]] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    data_quality: str
    timestamp: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    usage: dict[str, int] = Field(default_factory=dict)


class ConnectionResult(BaseModel):
    success: bool
    error: Optional[str] = None


class ServerStatus(BaseModel):
    status: str = "ok"
    active_conversations: int = 0
    max_conversations: int = 200
    uptime_seconds: float = 0.0
    api_key_configured: bool = False
    model: Optional[str] = None
