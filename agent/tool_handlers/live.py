"""Live snapshot tool handler."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from agent.limits import trunc, trunc_items

if TYPE_CHECKING:
    from agent.tool_dispatcher import ToolDispatcher


async def handle_get_live_snapshot(disp: "ToolDispatcher", tool_args: dict) -> str:
    purpose = tool_args.get("purpose") or "live data"
    paths = tool_args.get("paths")
    if isinstance(paths, str):
        paths = [paths]
    if paths:
        paths, _ = trunc_items([str(p) for p in paths], "items.snapshot_paths")
    scope = tool_args.get("scope") or None

    try:
        snapshot = disp.live_tree.snapshot(paths or None, scope)
    except ValueError as e:
        return f"Live data retrieval failed: {e}"
    text = f'Current live data "{purpose}":\n\n{json.dumps(snapshot, indent=2, default=str)}'
    return trunc(text, "tool.result")
