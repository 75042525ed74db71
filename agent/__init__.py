"""Agent layer: the tool-using analysis conversation over recorded sensor data.

Orchestrator, request types and tool schemas are imported on first access.
"""


def __getattr__(name: str):
    if name in ("AnalysisOrchestrator", "create_orchestrator"):
        from .core import AnalysisOrchestrator, create_orchestrator
        return AnalysisOrchestrator if name == "AnalysisOrchestrator" else create_orchestrator
    if name in ("AnalysisRequest", "AnalysisResponse"):
        from .core import AnalysisRequest, AnalysisResponse
        return AnalysisRequest if name == "AnalysisRequest" else AnalysisResponse
    if name in ("TOOLS", "get_tool_schemas"):
        from .tools import TOOLS, get_tool_schemas
        return TOOLS if name == "TOOLS" else get_tool_schemas
    raise AttributeError(f"module 'agent' has no attribute {name!r}")
