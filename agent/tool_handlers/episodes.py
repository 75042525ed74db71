"""Episode lookup tool handler."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from agent.errors import ToolExecutionError
from agent.tool_catalog import regimen_paths
from agent.limits import trunc, trunc_items
from data_ops.episodes import DEFAULT_EPISODE_LIMIT, find_episodes

if TYPE_CHECKING:
    from agent.tool_dispatcher import ToolDispatcher


def _parse_limit(raw) -> int:
    if raw is None:
        return DEFAULT_EPISODE_LIMIT
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        raise ToolExecutionError("find_episodes", f"Invalid limit: {raw!r}")
    return limit if limit > 0 else DEFAULT_EPISODE_LIMIT


async def handle_find_episodes(disp: "ToolDispatcher", tool_args: dict) -> str:
    regimen = tool_args.get("regimenName")
    if not regimen or not isinstance(regimen, str):
        raise ToolExecutionError("find_episodes", "Missing required 'regimenName' argument")
    time_range = tool_args.get("timeRange")
    if not isinstance(time_range, dict):
        time_range = None
    limit = _parse_limit(tool_args.get("limit"))

    try:
        states = await disp.engine.load_regimen_states(regimen, time_range)
        episodes = find_episodes(
            states,
            limit=limit,
            regimen=regimen,
            paths=regimen_paths(regimen, disp.regimens),
        )
    except (ToolExecutionError, ValueError) as e:
        return f"Episode detection failed: {e}"

    shown, total = trunc_items([e.to_dict() for e in episodes], "items.episodes")
    text = f'Found {total} episodes for regimen "{regimen}":\n\n{json.dumps(shown, indent=2)}'
    if len(shown) < total:
        text += f"\n\n... and {total - len(shown)} more episodes"
    return trunc(text, "tool.result")
