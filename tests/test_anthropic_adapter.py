"""Behavior tests for the Anthropic message mapping."""

from __future__ import annotations

from types import SimpleNamespace

from agent.conversation import (
    AgentTurn,
    TextBlock,
    ToolResult,
    ToolResultTurn,
    ToolUseBlock,
    UserTurn,
)
from agent.llm.anthropic_adapter import AnthropicAdapter, turns_to_messages, _parse_response
from agent.retry import OutcomeKind


def test_turns_map_to_alternating_messages() -> None:
    turns = [
        UserTurn("How is the battery?"),
        AgentTurn((TextBlock("Checking."), ToolUseBlock("t1", "run_query", {"query": "SELECT 1"}))),
        ToolResultTurn((ToolResult("t1", "[]", is_error=False),)),
        UserTurn("And the solar input?"),
    ]
    messages = turns_to_messages(turns)

    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[1]["content"][1] == {
        "type": "tool_use", "id": "t1", "name": "run_query", "input": {"query": "SELECT 1"},
    }
    merged = messages[2]["content"]
    assert merged[0]["type"] == "tool_result"
    assert merged[0]["tool_use_id"] == "t1"
    assert merged[1] == {"type": "text", "text": "And the solar input?"}


def test_parse_response_keeps_block_order_and_usage() -> None:
    raw = SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text="Let me look."),
            SimpleNamespace(type="tool_use", id="toolu_1", name="run_query", input={"query": "SELECT 1"}),
            SimpleNamespace(type="thinking", thinking="..."),
        ],
        usage=SimpleNamespace(input_tokens=120, output_tokens=30, cache_read_input_tokens=None),
        stop_reason="tool_use",
    )
    response = _parse_response(raw)

    assert response.text == "Let me look."
    assert [c.id for c in response.tool_calls] == ["toolu_1"]
    assert response.usage.to_dict() == {"input_tokens": 120, "output_tokens": 30}
    assert response.stop_reason == "tool_use"


def test_classify_failure_falls_back_to_message_text() -> None:
    adapter = AnthropicAdapter("test-key")
    assert adapter.classify_failure(RuntimeError("Overloaded")) is OutcomeKind.OVERLOADED
    assert adapter.classify_failure(RuntimeError("invalid model")) is OutcomeKind.FATAL
