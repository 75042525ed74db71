"""Tool handler registry.

Maps tool names to async handler functions. Every handler has the
signature ``async handler(dispatcher, tool_args) -> str``; the returned
string becomes the tool result content verbatim.
"""

from agent.tools import FIND_EPISODES, GET_LIVE_SNAPSHOT, RUN_QUERY

from agent.tool_handlers.query import handle_run_query
from agent.tool_handlers.live import handle_get_live_snapshot
from agent.tool_handlers.episodes import handle_find_episodes

TOOL_REGISTRY: dict = {
    RUN_QUERY: handle_run_query,
    GET_LIVE_SNAPSHOT: handle_get_live_snapshot,
    FIND_EPISODES: handle_find_episodes,
}
