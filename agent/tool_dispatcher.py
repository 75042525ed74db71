"""
Tool dispatcher — runs one tool invocation and always returns a result.

``dispatch()`` never raises. Handler failures are rendered into the result
content so that every tool use of an agent turn gets exactly one paired
``ToolResult``.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from .conversation import ToolInvocation, ToolResult
from .errors import ToolExecutionError
from .logging import log_error, log_tool_call, log_tool_result, tagged
from .tool_handlers import TOOL_REGISTRY
from .tools import TOOL_NAMES
from .limits import trunc

logger = logging.getLogger("bosun")


class ToolTimer:
    """Context manager for timing tool execution."""

    def __init__(self):
        self._start = 0.0
        self.elapsed_ms = 0

    def __enter__(self):
        self._start = time.monotonic()
        return self

    def __exit__(self, *exc):
        self.elapsed_ms = int((time.monotonic() - self._start) * 1000)
        return False


def unknown_tool_message(name: str) -> str:
    return f'Unknown tool "{name}" requested. Available tools: {", ".join(TOOL_NAMES)}'


class ToolDispatcher:
    """Routes tool invocations to the handlers in ``TOOL_REGISTRY``.

    Handlers reach their collaborators through this object:
    ``engine`` (DuckDB query engine), ``live_tree`` (live state) and
    ``regimens`` (configured regimen definitions).
    """

    def __init__(self, engine, live_tree, regimens: Optional[list[dict]] = None,
                 registry: Optional[dict] = None):
        self.engine = engine
        self.live_tree = live_tree
        self.regimens = regimens
        self._registry = registry if registry is not None else TOOL_REGISTRY

    async def dispatch(self, call: ToolInvocation) -> ToolResult:
        log_tool_call(call.name, call.input)

        handler = self._registry.get(call.name)
        if handler is None:
            content = unknown_tool_message(call.name)
            log_tool_result(call.name, content, success=False)
            return ToolResult(tool_use_id=call.id, content=content, is_error=True)

        timer = ToolTimer()
        try:
            with timer:
                content = await handler(self, dict(call.input or {}))
        except ToolExecutionError as e:
            content = trunc(f"Tool {e.tool_name} failed: {e}", "tool.error")
            log_tool_result(call.name, content, success=False)
            return ToolResult(tool_use_id=call.id, content=content, is_error=True)
        except Exception as e:
            log_error(f"Tool {call.name} raised", exc=e,
                      context={"tool_name": call.name, "tool_args": call.input})
            content = trunc(f"Tool processing failed: {e}", "tool.error")
            return ToolResult(tool_use_id=call.id, content=content, is_error=True)

        if not isinstance(content, str):
            content = str(content)
        logger.debug(f"Tool {call.name} finished in {timer.elapsed_ms} ms",
                     extra=tagged("tool_timing"))
        log_tool_result(call.name, content, success=True)
        return ToolResult(tool_use_id=call.id, content=content)
