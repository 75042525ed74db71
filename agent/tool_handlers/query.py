"""Query tool handler."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from agent.errors import QueryValidationError, ToolExecutionError
from agent.limits import trunc, trunc_items

if TYPE_CHECKING:
    from agent.tool_dispatcher import ToolDispatcher


async def handle_run_query(disp: "ToolDispatcher", tool_args: dict) -> str:
    query = tool_args.get("query")
    purpose = tool_args.get("purpose") or "query"
    if not query or not isinstance(query, str):
        raise ToolExecutionError("run_query", "Missing required 'query' argument")

    try:
        rows = await disp.engine.execute(query)
    except QueryValidationError as e:
        return f"Query rejected: {e}"
    except ToolExecutionError as e:
        return f"Query failed: {e}"

    preview, total = trunc_items(rows, "items.query_preview_rows")
    text = f'Query "{purpose}" returned {total} rows:\n\n{json.dumps(preview, indent=2, default=str)}'
    if len(preview) < total:
        text += f"\n\n... {total - len(preview)} more rows not shown; aggregate in SQL to see them"
    return trunc(text, "tool.result")
