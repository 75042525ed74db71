"""Tool catalog — decides which tools the agent sees for a question.

``run_query`` is always offered. The other tools are gated on the wording
of the question and of the last few user turns:

- ``get_live_snapshot`` when the user asks about current conditions;
- ``find_episodes`` when a configured regimen's keywords match, with the
  matching regimen names listed in the tool description.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable

import config
from .llm.base import FunctionSchema
from .tools import FIND_EPISODES, GET_LIVE_SNAPSHOT, RUN_QUERY, get_tool_schemas
from .limits import ITEMS, join_labels

logger = logging.getLogger("bosun")

REALTIME_KEYWORDS = (
    "now", "current", "real-time", "realtime", "live", "present",
    "right now", "at this moment",
)


def _texts(question: str, recent_user_texts: Iterable[str]) -> list[str]:
    recent = list(recent_user_texts)[-ITEMS["items.recent_user_turns"]:]
    return [t.lower() for t in [question, *recent] if t]


def needs_live_data(question: str, recent_user_texts: Iterable[str] = ()) -> bool:
    texts = _texts(question, recent_user_texts)
    return any(keyword in text for text in texts for keyword in REALTIME_KEYWORDS)


def relevant_regimens(
    question: str,
    recent_user_texts: Iterable[str] = (),
    regimens: list[dict] | None = None,
) -> list[str]:
    """Names of configured regimens whose keywords appear in the question or recent turns."""
    if regimens is None:
        regimens = config.get_regimens()
    texts = _texts(question, recent_user_texts)
    names = []
    for regimen in regimens:
        keywords = [k.lower() for k in regimen.get("keywords") or [] if k]
        if keywords and any(k in text for text in texts for k in keywords):
            names.append(regimen["name"])
    return names


def regimen_paths(name: str, regimens: list[dict] | None = None) -> list[str]:
    if regimens is None:
        regimens = config.get_regimens()
    for regimen in regimens:
        if regimen.get("name") == name:
            return list(regimen.get("paths") or [])
    return []


def select_tools(
    question: str,
    recent_user_texts: Iterable[str] = (),
    regimens: list[dict] | None = None,
) -> list[FunctionSchema]:
    """Return the tool schemas to offer for *question*."""
    recent = list(recent_user_texts)
    names = [RUN_QUERY]
    if needs_live_data(question, recent):
        names.append(GET_LIVE_SNAPSHOT)
    matched = relevant_regimens(question, recent, regimens)
    if matched:
        names.append(FIND_EPISODES)

    schemas = get_tool_schemas(names)
    for schema in schemas:
        if schema.name == FIND_EPISODES:
            params = copy.deepcopy(schema.parameters)
            params["properties"]["regimenName"]["description"] = (
                f"Regimen to analyze. Available: {join_labels(matched, 'schema.regimens')}"
            )
            schema.parameters = params

    logger.debug(f"Tools offered: {', '.join(s.name for s in schemas)}")
    return schemas
