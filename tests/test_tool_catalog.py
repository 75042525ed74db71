"""Behavior tests for per-question tool selection."""

from __future__ import annotations

from agent.tool_catalog import needs_live_data, regimen_paths, relevant_regimens, select_tools
from agent.tools import FIND_EPISODES, GET_LIVE_SNAPSHOT, RUN_QUERY, TOOLS

REGIMENS = [
    {"name": "anchorWatch", "keywords": ["anchor", "anchored"], "paths": ["navigation.anchor.position"]},
    {"name": "motoring", "keywords": ["engine", "motoring"], "paths": ["propulsion.main.revolutions"]},
    {"name": "silent", "keywords": [], "paths": []},
]


def _names(schemas) -> list[str]:
    return [s.name for s in schemas]


def test_run_query_is_always_offered() -> None:
    assert _names(select_tools("Average wind speed last week?", (), REGIMENS)) == [RUN_QUERY]


def test_realtime_wording_adds_live_snapshot() -> None:
    names = _names(select_tools("What is the current heading?", (), REGIMENS))
    assert names == [RUN_QUERY, GET_LIVE_SNAPSHOT]


def test_recent_user_turns_count_towards_selection() -> None:
    names = _names(select_tools("and the depth?", ["Show me live values"], REGIMENS))
    assert GET_LIVE_SNAPSHOT in names


def test_only_the_last_few_user_turns_are_considered() -> None:
    history = ["Are we anchored right now?", "a", "b", "c"]
    assert not needs_live_data("and the depth?", history)
    assert relevant_regimens("and the depth?", history, REGIMENS) == []


def test_regimen_keywords_add_find_episodes_with_matching_names() -> None:
    schemas = select_tools("When did we last run the engine while anchored?", (), REGIMENS)
    assert _names(schemas) == [RUN_QUERY, FIND_EPISODES]
    description = schemas[1].parameters["properties"]["regimenName"]["description"]
    assert description == "Regimen to analyze. Available: anchorWatch, motoring"


def test_selection_does_not_mutate_shared_tool_definitions() -> None:
    select_tools("engine hours", (), REGIMENS)
    original = next(t for t in TOOLS if t["name"] == FIND_EPISODES)
    assert original["parameters"]["properties"]["regimenName"]["description"] == "Regimen to analyze"


def test_regimen_paths_lookup() -> None:
    assert regimen_paths("anchorWatch", REGIMENS) == ["navigation.anchor.position"]
    assert regimen_paths("missing", REGIMENS) == []
