"""Behavior tests for the analysis orchestrator round loop and request modes."""

from __future__ import annotations

import itertools
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

from agent.conversation import AgentTurn, TextBlock, ToolResultTurn, ToolUseBlock, UserTurn
from agent.conversation_store import ConversationStore
from agent.core import AnalysisOrchestrator, AnalysisRequest, create_orchestrator
from agent.errors import (
    AnalysisFailedError,
    ConversationNotFoundError,
    EmptyAnalysisError,
)
from agent.llm import FunctionSchema, LLMAdapter, LLMResponse, UsageMetadata
from agent.retry import RetryExecutor
from agent.tool_dispatcher import ToolDispatcher
from data_ops.analysis_store import AnalysisStore
from data_ops.live_data import LiveStateTree
from data_ops.records import TimeSeriesRecord

_ids = itertools.count(1)


def _text(text: str, tokens: int = 10) -> LLMResponse:
    return LLMResponse(blocks=[TextBlock(text)], usage=UsageMetadata(tokens, tokens // 2))


def _tool(query: str = "SELECT 1", text: str = "", tokens: int = 10) -> LLMResponse:
    blocks: list = [TextBlock(text)] if text else []
    blocks.append(ToolUseBlock(f"toolu_{next(_ids)}", "run_query", {"query": query, "purpose": "look"}))
    return LLMResponse(blocks=blocks, usage=UsageMetadata(tokens, tokens // 2))


class _ScriptedAdapter(LLMAdapter):
    """Adapter fake replaying scripted responses and recording every call."""

    def __init__(self, script: Sequence[LLMResponse | Exception] | Callable[[], LLMResponse]) -> None:
        self._script = script if callable(script) else list(script)
        self.calls: list[dict[str, Any]] = []

    async def create_message(
        self,
        model: str,
        system_prompt: str,
        turns,
        tools: list[FunctionSchema] | None = None,
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> LLMResponse:
        self.calls.append({
            "system_prompt": system_prompt,
            "turns": list(turns),
            "tools": [t.name for t in tools or []],
            "max_output_tokens": max_output_tokens,
        })
        item = self._script() if callable(self._script) else self._script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class _FakeEngine:
    """Query engine fake returning one canned row."""

    parquet_root = "/data/parquet"

    def __init__(self) -> None:
        self.queries: list[str] = []

    async def execute(self, sql: str) -> list[dict[str, Any]]:
        self.queries.append(sql)
        return [{"avg_voltage": 12.6}]

    async def load_regimen_states(self, regimen: str, time_range=None) -> list:
        return []


class _FakeHistory:
    """History client fake returning prepared records."""

    def __init__(self, records: list[TimeSeriesRecord]) -> None:
        self.records = records
        self.calls: list[tuple] = []

    async def fetch(self, data_path, time_range=None, aggregation=None, resolution=None):
        self.calls.append((data_path, time_range, aggregation, resolution))
        return self.records


class _RecordingSleep:
    """Fake sleep that records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _RateLimited(Exception):
    """Exception shaped like an HTTP 429 from the SDK."""

    status_code = 429


def _records(n: int) -> list[TimeSeriesRecord]:
    start = datetime.now(timezone.utc) - timedelta(hours=1)
    return [
        TimeSeriesRecord(
            timestamp=(start + timedelta(seconds=i)).isoformat(),
            path="electrical.batteries.house.voltage",
            value=12.5 + (i % 3) / 10,
        )
        for i in range(n)
    ]


@pytest.fixture
def engine() -> _FakeEngine:
    return _FakeEngine()


@pytest.fixture
def sleep() -> _RecordingSleep:
    return _RecordingSleep()


@pytest.fixture
def make_orchestrator(engine: _FakeEngine, sleep: _RecordingSleep, tmp_path: Path):
    def build(adapter: LLMAdapter, registry: dict | None = None, history=None) -> AnalysisOrchestrator:
        dispatcher = ToolDispatcher(engine=engine, live_tree=LiveStateTree(), regimens=[], registry=registry)
        return AnalysisOrchestrator(
            adapter=adapter,
            dispatcher=dispatcher,
            store=ConversationStore(max_entries=10, idle_timeout_seconds=0),
            analysis_store=AnalysisStore(tmp_path / "history"),
            history=history,
            retry=RetryExecutor(adapter.classify_failure, sleep=sleep, max_jitter_s=0),
            model="test-model",
        )
    return build


# ---- Round loop ----

@pytest.mark.asyncio
async def test_run_queries_then_answers(make_orchestrator, engine: _FakeEngine) -> None:
    adapter = _ScriptedAdapter([
        _tool("SELECT AVG(value) FROM t", text="Let me check the voltage."),
        _text("Voltage held steady.\n- Average 12.6 V\n- No dips below 12.2 V"),
    ])
    orch = make_orchestrator(adapter)

    result = await orch.run("How did the house battery do overnight?", max_rounds=5)

    assert engine.queries == ["SELECT AVG(value) FROM t"]
    assert result.analysis == "Let me check the voltage.\n\nVoltage held steady.\n- Average 12.6 V\n- No dips below 12.2 V"
    assert result.insights == ["Average 12.6 V", "No dips below 12.2 V"]
    assert result.confidence == 0.95
    assert result.data_quality == "Dynamic assessment via 1 database queries"
    assert result.metadata["queries_executed"] == 1
    assert result.metadata["mode"] == "database"
    assert result.usage == {"input_tokens": 20, "output_tokens": 10}

    conversation = orch.store.get(result.id)
    kinds = [type(t) for t in conversation.turns]
    assert kinds == [UserTurn, AgentTurn, ToolResultTurn, AgentTurn]
    tool_result = conversation.turns[2].results[0]
    assert tool_result.tool_use_id == conversation.turns[1].tool_uses[0].id
    assert '"avg_voltage": 12.6' in tool_result.content


@pytest.mark.asyncio
async def test_round_budget_returns_partial_text(make_orchestrator) -> None:
    adapter = _ScriptedAdapter(lambda: _tool(text="Still looking."))
    orch = make_orchestrator(adapter)

    result = await orch.run("Find every tack this year", max_rounds=3)

    assert len(adapter.calls) == 3
    assert result.analysis == "Still looking.\n\nStill looking.\n\nStill looking."
    assert result.metadata["queries_executed"] == 3
    conversation = orch.store.get(result.id)
    assert isinstance(conversation.turns[-1], ToolResultTurn)
    assert conversation.pending_tool_use_ids == []


@pytest.mark.asyncio
async def test_failing_handler_still_answers_every_tool_use(make_orchestrator) -> None:
    async def explode(disp, tool_args):
        raise RuntimeError("disk on fire")

    agent_turn = LLMResponse(blocks=[
        ToolUseBlock("a", "run_query", {"query": "SELECT 1"}),
        ToolUseBlock("b", "not_a_tool", {}),
    ])
    adapter = _ScriptedAdapter([agent_turn, _text("Could not read the data.")])
    orch = make_orchestrator(adapter, registry={"run_query": explode})

    result = await orch.run("q", max_rounds=5)

    results = orch.store.get(result.id).turns[2].results
    assert [r.tool_use_id for r in results] == ["a", "b"]
    assert all(r.is_error for r in results)
    assert results[0].content == "Tool processing failed: disk on fire"
    assert results[1].content.startswith('Unknown tool "not_a_tool" requested.')
    second_call_turns = adapter.calls[1]["turns"]
    assert isinstance(second_call_turns[-1], ToolResultTurn)


@pytest.mark.asyncio
async def test_raising_dispatcher_is_contained(make_orchestrator) -> None:
    class _BrokenDispatcher:
        """Dispatcher whose dispatch itself raises."""

        engine = _FakeEngine()
        regimens: list = []

        async def dispatch(self, call):
            raise RuntimeError("dispatcher down")

    adapter = _ScriptedAdapter([_tool(), _text("done")])
    orch = make_orchestrator(adapter)
    orch.dispatcher = _BrokenDispatcher()

    result = await orch.run("q", max_rounds=5)
    (tool_result,) = orch.store.get(result.id).turns[2].results
    assert tool_result.is_error
    assert tool_result.content == "Tool processing failed: dispatcher down"


@pytest.mark.asyncio
async def test_empty_answer_raises_but_keeps_conversation(make_orchestrator) -> None:
    adapter = _ScriptedAdapter([LLMResponse(blocks=[])])
    orch = make_orchestrator(adapter)

    with pytest.raises(EmptyAnalysisError):
        await orch.run("q", conversation_id="analysis_1_empty", max_rounds=5)
    assert "analysis_1_empty" in orch.store


@pytest.mark.asyncio
async def test_offered_tools_follow_the_question(make_orchestrator) -> None:
    adapter = _ScriptedAdapter([_text("ok")])
    orch = make_orchestrator(adapter)
    await orch.run("What is the current wind speed?", max_rounds=1)
    assert adapter.calls[0]["tools"] == ["run_query", "get_live_snapshot"]


# ---- Follow-ups ----

@pytest.mark.asyncio
async def test_resume_unknown_conversation(make_orchestrator) -> None:
    orch = make_orchestrator(_ScriptedAdapter([]))
    with pytest.raises(ConversationNotFoundError):
        await orch.resume("analysis_0_missing", "and then?")


@pytest.mark.asyncio
async def test_resume_appends_to_stored_conversation(make_orchestrator, tmp_path: Path) -> None:
    adapter = _ScriptedAdapter([
        _text("Battery is fine."),
        _tool(),
        _text("Solar peaked at noon."),
    ])
    orch = make_orchestrator(adapter)
    first = await orch.run("How is the battery?", system_prompt="SYSTEM-A", max_rounds=5)

    follow = await orch.resume(first.id, "And solar?")

    assert follow.id == first.id
    assert follow.analysis == "Solar peaked at noon."
    assert follow.confidence == 0.9
    assert follow.data_quality == "Follow-up with 1 additional queries"
    assert adapter.calls[1]["system_prompt"] == "SYSTEM-A"
    assert [t.content for t in adapter.calls[1]["turns"] if isinstance(t, UserTurn)] == [
        "How is the battery?", "And solar?",
    ]

    conversation = orch.store.get(first.id)
    assert conversation.user_texts() == ["How is the battery?", "And solar?"]
    assert len(conversation.turns) == 6
    saved = AnalysisStore(tmp_path / "history").get(first.id)
    assert saved["analysis"] == "Solar peaked at noon."


# ---- analyze() ----

@pytest.mark.asyncio
async def test_analyze_with_database_access(make_orchestrator, tmp_path: Path) -> None:
    adapter = _ScriptedAdapter([_text("Engine ran for 3 hours.")])
    orch = make_orchestrator(adapter)
    window = (datetime(2024, 6, 1, tzinfo=timezone.utc), datetime(2024, 6, 2, tzinfo=timezone.utc))

    result = await orch.analyze(AnalysisRequest(
        custom_prompt="How long did the engine run?",
        time_range=window,
        use_database_access=True,
    ))

    assert result.id.startswith("analysis_")
    assert result.metadata["data_path"] == "database_access_mode"
    assert result.metadata["time_range"] == {
        "start": "2024-06-01T00:00:00+00:00", "end": "2024-06-02T00:00:00+00:00",
    }
    first_turn = adapter.calls[0]["turns"][0]
    assert first_turn.content == "ANALYSIS REQUEST: How long did the engine run?"
    assert "2024-06-01T00:00:00Z" in adapter.calls[0]["system_prompt"]
    assert AnalysisStore(tmp_path / "history").get(result.id) is not None


@pytest.mark.asyncio
async def test_analyze_wraps_foreign_errors_once(make_orchestrator) -> None:
    orch = make_orchestrator(_ScriptedAdapter([RuntimeError("socket closed")]))
    with pytest.raises(AnalysisFailedError) as exc:
        await orch.analyze(AnalysisRequest(custom_prompt="q", use_database_access=True))
    assert str(exc.value) == "Analysis failed: socket closed"


@pytest.mark.asyncio
async def test_analyze_does_not_rewrap_prefixed_errors(make_orchestrator) -> None:
    orch = make_orchestrator(_ScriptedAdapter([RuntimeError("Analysis failed: upstream")]))
    with pytest.raises(RuntimeError) as exc:
        await orch.analyze(AnalysisRequest(custom_prompt="q", use_database_access=True))
    assert str(exc.value) == "Analysis failed: upstream"


@pytest.mark.asyncio
async def test_analyze_passes_pipeline_errors_through(make_orchestrator) -> None:
    orch = make_orchestrator(_ScriptedAdapter([LLMResponse(blocks=[])]))
    with pytest.raises(EmptyAnalysisError):
        await orch.analyze(AnalysisRequest(custom_prompt="q", use_database_access=True))


@pytest.mark.asyncio
async def test_rate_limited_call_is_retried(make_orchestrator, sleep: _RecordingSleep) -> None:
    adapter = _ScriptedAdapter([_RateLimited("slow down"), _text("Answer after retry.")])
    orch = make_orchestrator(adapter)
    result = await orch.analyze(AnalysisRequest(custom_prompt="q", use_database_access=True))
    assert result.analysis == "Answer after retry."
    assert len(sleep.delays) == 1
    assert sleep.delays[0] >= 5


@pytest.mark.asyncio
async def test_analyze_with_sampling(make_orchestrator) -> None:
    answer = {
        "analysis": "Voltage is healthy.",
        "insights": ["Stable overnight"],
        "recommendations": [],
        "anomalies": [{"timestamp": "2024-06-01T03:00:00Z", "severity": "low", "description": "small dip"}],
        "confidence": 0.72,
        "dataQuality": "good",
    }
    adapter = _ScriptedAdapter([_text(json.dumps(answer))])
    history = _FakeHistory(_records(120))
    orch = make_orchestrator(adapter, history=history)

    result = await orch.analyze(AnalysisRequest(
        data_path="electrical.batteries.house.voltage",
        analysis_type="summary",
        aggregation_method="max",
    ))

    assert history.calls == [("electrical.batteries.house.voltage", None, "max", None)]
    prompt = adapter.calls[0]["turns"][0].content
    assert "- Records: 120 (showing sample of 30)" in prompt
    assert adapter.calls[0]["tools"] == []
    assert result.analysis == "Voltage is healthy."
    assert result.confidence == 0.72
    assert result.data_quality == "good"
    assert result.anomalies[0]["severity"] == "low"
    assert result.metadata["mode"] == "sampling"
    assert result.metadata["record_count"] == 120
    assert result.metadata["queries_executed"] == 0


@pytest.mark.asyncio
async def test_large_record_sets_send_fewer_samples(make_orchestrator) -> None:
    adapter = _ScriptedAdapter([_text("Plain prose answer.")])
    orch = make_orchestrator(adapter, history=_FakeHistory(_records(10_001)))

    result = await orch.quick_analysis("electrical.batteries.house.voltage", "trend")

    assert "(showing sample of 20)" in adapter.calls[0]["turns"][0].content
    assert result.analysis == "Plain prose answer."
    assert result.confidence == 0.8
    assert result.data_quality == "Analysis completed"


@pytest.mark.asyncio
async def test_sampling_without_history_client_fails(make_orchestrator) -> None:
    orch = make_orchestrator(_ScriptedAdapter([]))
    with pytest.raises(AnalysisFailedError) as exc:
        await orch.analyze(AnalysisRequest(data_path="a.b"))
    assert str(exc.value).startswith("Analysis failed: ")
    assert not str(exc.value).startswith("Analysis failed: Analysis failed")


@pytest.mark.asyncio
async def test_detect_anomalies_returns_anomaly_list(make_orchestrator) -> None:
    answer = {"analysis": "One spike.", "anomalies": [{"timestamp": "t", "severity": "high"}]}
    adapter = _ScriptedAdapter([_text(json.dumps(answer))])
    orch = make_orchestrator(adapter, history=_FakeHistory(_records(10)))

    anomalies = await orch.detect_anomalies("electrical.batteries.house.current")

    assert anomalies == [{"timestamp": "t", "severity": "high"}]
    assert "Focus specifically on detecting anomalies" in adapter.calls[0]["turns"][0].content


# ---- Connection test and factory ----

@pytest.mark.asyncio
async def test_connection_check(make_orchestrator) -> None:
    ok = make_orchestrator(_ScriptedAdapter([_text("Connection successful!")]))
    assert await ok.test_connection() == {"success": True}

    odd = make_orchestrator(_ScriptedAdapter([_text("Hi there")]))
    assert (await odd.test_connection())["success"] is False

    down = make_orchestrator(_ScriptedAdapter([RuntimeError("network unreachable")]))
    assert await down.test_connection() == {"success": False, "error": "network unreachable"}


def test_create_orchestrator_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(ValueError):
        create_orchestrator()


def test_create_orchestrator_with_injected_adapter() -> None:
    orch = create_orchestrator(adapter=_ScriptedAdapter([]), model="test-model")
    try:
        assert orch.model == "test-model"
        assert orch.history is not None
        assert orch.analysis_store is not None
        assert orch.dispatcher.live_tree is not None
    finally:
        orch.dispatcher.engine.close()
