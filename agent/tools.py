"""
Tool definitions for the analysis agent.

Each tool schema defines what the agent can call and what parameters it
needs. Which tools are offered on a given round is decided by
``tool_catalog.select_tools()``; execution goes through ``ToolDispatcher``.
"""

from __future__ import annotations

from .llm.base import FunctionSchema

RUN_QUERY = "run_query"
GET_LIVE_SNAPSHOT = "get_live_snapshot"
FIND_EPISODES = "find_episodes"

TOOLS = [
    {
        "name": RUN_QUERY,
        "description": """Execute a read-only SQL query against the parquet time-series store.

Only SELECT and WITH statements are accepted. Address tables by parquet glob, e.g.
SELECT * FROM '<root>/vessels/*/navigation/speedOverGround/*.parquet' LIMIT 10
Results are capped at 1000 rows; aggregate in SQL instead of fetching raw rows.""",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "SQL query to execute"
                },
                "purpose": {
                    "type": "string",
                    "description": "Brief description of what this query is trying to discover"
                }
            },
            "required": ["query", "purpose"]
        }
    },
    {
        "name": GET_LIVE_SNAPSHOT,
        "description": """Get the current live values for specific paths, or for everything, from one or all vessels.
Use this when the question is about "now", "current" or "real-time" conditions.
For questions about all or other vessels, use scope="vessels.*".""",
        "parameters": {
            "type": "object",
            "properties": {
                "paths": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Dotted data paths (e.g. [\"navigation.position\", \"navigation.speedOverGround\"]). Leave empty for all current values."
                },
                "purpose": {
                    "type": "string",
                    "description": "Brief description of why you need this live data"
                },
                "scope": {
                    "type": "string",
                    "description": "\"vessels.self\" (default) for own vessel, \"vessels.*\" for all vessels, or an explicit vessel context."
                }
            },
            "required": ["purpose"]
        }
    },
    {
        "name": FIND_EPISODES,
        "description": """REQUIRED for finding periods when a regimen was active. Detects start/end boundaries from command state changes (false -> true -> false). Use this instead of run_query for episode detection.""",
        "parameters": {
            "type": "object",
            "properties": {
                "regimenName": {
                    "type": "string",
                    "description": "Regimen to analyze"
                },
                "timeRange": {
                    "type": "object",
                    "description": "Optional time range constraint",
                    "properties": {
                        "start": {"type": "string", "description": "ISO 8601 start"},
                        "end": {"type": "string", "description": "ISO 8601 end"}
                    }
                },
                "limit": {
                    "type": "number",
                    "description": "Maximum number of episodes to return (default: 10)"
                }
            },
            "required": ["regimenName"]
        }
    },
]

_TOOLS_BY_NAME = {t["name"]: t for t in TOOLS}
TOOL_NAMES = [t["name"] for t in TOOLS]


def get_tool_schemas(names: list[str] | None = None) -> list[FunctionSchema]:
    """Return FunctionSchema objects for *names* (all tools when None)."""
    selected = TOOLS if names is None else [_TOOLS_BY_NAME[n] for n in names]
    return [FunctionSchema(name=t["name"], description=t["description"], parameters=t["parameters"])
            for t in selected]
