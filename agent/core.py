"""
Core agent logic - drives the tool-use conversation with the reasoning agent.

The AnalysisOrchestrator serves two kinds of requests:
- database access mode: a bounded multi-round loop in which the agent
  queries the parquet store through tools until it stops asking for them;
- sampling mode: history fetch, summary and sample, then one agent call
  whose answer is parsed best-effort.

Conversations from database access mode are kept in a ConversationStore so
follow-up questions see the full history.
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

import config
from config import get_api_key
from .conversation import (
    AgentTurn,
    Conversation,
    ToolResult,
    ToolResultTurn,
    ToolUseBlock,
    UserTurn,
)
from .conversation_store import ConversationStore
from .errors import (
    AnalysisFailedError,
    ConversationNotFoundError,
    EmptyAnalysisError,
    is_terminal_failure,
)
from .llm import AnthropicAdapter, FunctionSchema, LLMAdapter, LLMResponse, UsageMetadata
from .logging import (
    attach_log_file,
    log_analysis_end,
    log_error,
    set_session_id,
    setup_logging,
    tagged,
)
from .prompts import (
    CONNECTION_TEST_PROMPT,
    build_request_prompt,
    build_sampling_prompt,
    get_system_prompt,
)
from .response_parser import extract_bullet_points, parse_analysis_text
from .retry import RetryExecutor
from .tool_catalog import select_tools
from .tool_dispatcher import ToolDispatcher
from .tools import RUN_QUERY
from .limits import trunc, turn_limit
from data_ops.sampler import sample, summarize

logger = logging.getLogger("bosun")

ANOMALY_PROMPT = (
    "Focus specifically on detecting anomalies and unusual patterns in this data. "
    "Return detailed anomaly information."
)

# Sampling mode sends fewer records when the fetched set is large
LARGE_RECORD_SET = 10_000
LARGE_SET_SAMPLES = 20
DEFAULT_SAMPLES = 50

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_analysis_id() -> str:
    """``analysis_<epoch ms>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"analysis_{int(time.time() * 1000)}_{suffix}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _time_range_dict(time_range) -> Optional[dict]:
    if not time_range:
        return None
    start, end = time_range
    return {"start": start.isoformat(), "end": end.isoformat()}


@dataclass
class AnalysisRequest:
    data_path: str = ""
    analysis_type: str = "custom"
    time_range: Optional[tuple[datetime, datetime]] = None
    custom_prompt: Optional[str] = None
    context: dict = field(default_factory=dict)
    aggregation_method: Optional[str] = None
    resolution: Optional[str] = None
    use_database_access: bool = False


@dataclass
class AnalysisResponse:
    """Final answer of one analysis or follow-up."""
    id: str
    analysis: str
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    anomalies: list[dict] = field(default_factory=list)
    confidence: float = 0.8
    data_quality: str = "Analysis completed"
    timestamp: str = field(default_factory=_now_iso)
    metadata: dict = field(default_factory=dict)
    usage: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _LoopResult:
    text: str
    usage: UsageMetadata
    queries_executed: int
    rounds: int
    completed: bool


class AnalysisOrchestrator:
    """Drives analysis conversations between the caller and the reasoning agent."""

    def __init__(
        self,
        adapter: LLMAdapter,
        dispatcher: ToolDispatcher,
        store: Optional[ConversationStore] = None,
        analysis_store=None,
        history=None,
        retry: Optional[RetryExecutor] = None,
        model: Optional[str] = None,
        log_to_file: bool = False,
    ):
        self.adapter = adapter
        self.dispatcher = dispatcher
        self.store = store if store is not None else ConversationStore()
        self.analysis_store = analysis_store
        self.history = history
        self.retry = retry or RetryExecutor(classify=adapter.classify_failure)
        self.model = model or config.MODEL
        self._log_to_file = log_to_file

    # ------------------------------------------------------------------
    # Agent calls
    # ------------------------------------------------------------------

    async def _call_agent(self, system_prompt: str, turns, tools) -> LLMResponse:
        async def call():
            return await self.adapter.create_message(
                self.model,
                system_prompt,
                list(turns),
                tools,
                temperature=config.TEMPERATURE,
                max_output_tokens=config.MAX_OUTPUT_TOKENS,
            )
        return await self.retry.execute(call, turn_limit("llm.max_retries"))

    async def _dispatch(self, call: ToolUseBlock) -> ToolResult:
        try:
            result = await self.dispatcher.dispatch(call)
        except Exception as e:
            log_error(f"Dispatch of {call.name} raised", exc=e,
                      context={"tool_use_id": call.id})
            return ToolResult(
                tool_use_id=call.id,
                content=trunc(f"Tool processing failed: {e}", "tool.error"),
                is_error=True,
            )
        if result.tool_use_id != call.id:
            result = ToolResult(call.id, result.content, result.is_error)
        return result

    async def _run_rounds(
        self,
        conversation: Conversation,
        system_prompt: str,
        tools: Optional[list[FunctionSchema]],
        max_rounds: int,
    ) -> _LoopResult:
        """Round loop: agent call, append, dispatch every tool use, append results."""
        usage = UsageMetadata()
        texts: list[str] = []
        queries = 0
        rounds = 0
        completed = False

        while rounds < max_rounds:
            rounds += 1
            response = await self._call_agent(system_prompt, conversation.turns, tools)
            usage.add(response.usage)

            agent_turn = AgentTurn(tuple(response.blocks))
            conversation.append(agent_turn)
            if agent_turn.text:
                texts.append(agent_turn.text)
                logger.debug(f"Agent text: {trunc(agent_turn.text, 'console.text')}")

            calls = agent_turn.tool_uses
            if not calls:
                completed = True
                break

            results = []
            for call in calls:
                if call.name == RUN_QUERY:
                    queries += 1
                results.append(await self._dispatch(call))
            conversation.append(ToolResultTurn(tuple(results)))

        if not completed:
            logger.warning(
                f"Round budget of {max_rounds} reached for {conversation.id}; returning partial answer",
                extra=tagged("round_budget"),
            )
        return _LoopResult(
            text="\n\n".join(texts).strip(),
            usage=usage,
            queries_executed=queries,
            rounds=rounds,
            completed=completed,
        )

    def _begin(self, conversation_id: str) -> None:
        set_session_id(conversation_id)
        if self._log_to_file:
            attach_log_file(conversation_id)

    def _metadata(self, conversation: Conversation, mode: str, queries: int, record_count: int) -> dict:
        ctx = conversation.context
        return {
            "queries_executed": queries,
            "time_range": ctx.get("time_range"),
            "mode": mode,
            "data_path": ctx.get("data_path") or "database_access_mode",
            "analysis_type": ctx.get("analysis_type", "custom"),
            "record_count": record_count,
        }

    # ------------------------------------------------------------------
    # Public API: conversations
    # ------------------------------------------------------------------

    async def run(
        self,
        initial_content: str,
        tools: Optional[list[FunctionSchema]] = None,
        *,
        max_rounds: Optional[int] = None,
        conversation_id: Optional[str] = None,
        system_prompt: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> AnalysisResponse:
        """Start a new conversation and run the round loop to completion.

        Args:
            initial_content: The first user turn.
            tools: Tool schemas to offer; chosen from the question when None.
            max_rounds: Round budget; ``analysis.max_rounds`` when None.
            conversation_id: Id for the new conversation; generated when None.
            system_prompt: System prompt; the database access prompt when None.
            context: Facts about the request kept with the conversation.

        Raises:
            EmptyAnalysisError: The agent produced no narrative text.
        """
        cid = conversation_id or new_analysis_id()
        self._begin(cid)
        if system_prompt is None:
            system_prompt = get_system_prompt(parquet_root=self.dispatcher.engine.parquet_root)
        if tools is None:
            tools = select_tools(initial_content, (), self.dispatcher.regimens)
        if max_rounds is None:
            max_rounds = turn_limit("analysis.max_rounds")

        conversation = Conversation(id=cid, context=dict(context or {}))
        conversation.context["system_prompt"] = system_prompt
        conversation.append(UserTurn(initial_content))
        logger.info(f"Analysis {cid} started: {trunc(initial_content, 'console.query')}",
                    extra=tagged("analysis_start"))

        async with self.store.lock(cid):
            try:
                result = await self._run_rounds(conversation, system_prompt, tools, max_rounds)
            finally:
                self.store.put(conversation)

        log_analysis_end(result.usage.to_dict(), result.queries_executed)
        if not result.text:
            raise EmptyAnalysisError(
                "Analysis completed but no results were generated. "
                "This may indicate a configuration issue."
            )

        n = result.queries_executed
        return AnalysisResponse(
            id=cid,
            analysis=result.text,
            insights=extract_bullet_points(result.text),
            confidence=0.95,
            data_quality=f"Dynamic assessment via {n} database queries",
            metadata=self._metadata(conversation, "database", n, n),
            usage=result.usage.to_dict(),
        )

    async def resume(
        self,
        conversation_id: str,
        question: str,
        *,
        max_rounds: Optional[int] = None,
    ) -> AnalysisResponse:
        """Ask a follow-up question on a stored conversation.

        Raises:
            ConversationNotFoundError: No conversation with this id is stored.
            EmptyAnalysisError: The agent produced no narrative text.
        """
        if conversation_id not in self.store:
            raise ConversationNotFoundError(conversation_id)
        if max_rounds is None:
            max_rounds = turn_limit("follow_up.max_rounds")

        async with self.store.lock(conversation_id):
            conversation = self.store.get(conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(conversation_id)
            self._begin(conversation_id)

            previous = conversation.user_texts()
            conversation.append(UserTurn(question))
            tools = select_tools(question, previous, self.dispatcher.regimens)
            system_prompt = conversation.context.get("system_prompt") or get_system_prompt(
                parquet_root=self.dispatcher.engine.parquet_root
            )
            logger.info(f"Follow-up on {conversation_id}: {trunc(question, 'console.query')}",
                        extra=tagged("follow_up_start"))
            try:
                result = await self._run_rounds(conversation, system_prompt, tools, max_rounds)
            finally:
                self.store.put(conversation)

        log_analysis_end(result.usage.to_dict(), result.queries_executed)
        if not result.text:
            raise EmptyAnalysisError("Follow-up completed but no answer was generated.")

        n = result.queries_executed
        response = AnalysisResponse(
            id=conversation_id,
            analysis=result.text,
            insights=extract_bullet_points(result.text),
            confidence=0.9,
            data_quality=f"Follow-up with {n} additional queries",
            metadata=self._metadata(conversation, "database", n, n),
            usage=result.usage.to_dict(),
        )
        self._save(response)
        return response

    # ------------------------------------------------------------------
    # Public API: analysis requests
    # ------------------------------------------------------------------

    def _save(self, response: AnalysisResponse) -> None:
        if self.analysis_store is not None:
            self.analysis_store.put(response.to_dict())

    async def analyze(self, request: AnalysisRequest) -> AnalysisResponse:
        """Run one analysis request in database access or sampling mode.

        Pipeline errors propagate unchanged; anything else is wrapped once in
        ``AnalysisFailedError``.
        """
        mode = "database access" if request.use_database_access else "sampling"
        logger.debug(f"Starting {request.analysis_type} analysis for "
                     f"{request.data_path or '(no path)'} ({mode} mode)")
        try:
            if request.use_database_access:
                response = await self._analyze_with_database(request)
            else:
                response = await self._analyze_with_sampling(request)
        except Exception as e:
            log_error("Analysis failed", exc=e, context={
                "data_path": request.data_path,
                "analysis_type": request.analysis_type,
                "mode": mode,
            })
            if is_terminal_failure(e):
                raise
            raise AnalysisFailedError(e) from e

        self._save(response)
        logger.debug(f"Analysis completed: {response.id}")
        return response

    async def _analyze_with_database(self, request: AnalysisRequest) -> AnalysisResponse:
        system_prompt = get_system_prompt(
            request.time_range, parquet_root=self.dispatcher.engine.parquet_root
        )
        question = build_request_prompt(request.custom_prompt, request.data_path)
        return await self.run(
            question,
            system_prompt=system_prompt,
            context={
                "data_path": request.data_path,
                "analysis_type": request.analysis_type,
                "time_range": _time_range_dict(request.time_range),
                **request.context,
            },
        )

    async def _analyze_with_sampling(self, request: AnalysisRequest) -> AnalysisResponse:
        if self.history is None:
            raise AnalysisFailedError("Sampling mode needs a history client")

        records = await self.history.fetch(
            request.data_path, request.time_range,
            request.aggregation_method, request.resolution,
        )
        summary = summarize(records)
        max_samples = LARGE_SET_SAMPLES if len(records) > LARGE_RECORD_SET else DEFAULT_SAMPLES
        samples = [r.to_dict() if hasattr(r, "to_dict") else dict(r)
                   for r in sample(records, max_samples)]
        prompt = build_sampling_prompt(
            request.data_path, summary.to_dict(), samples,
            request.analysis_type, request.custom_prompt,
        )

        async def call():
            return await self.adapter.generate(
                self.model, prompt,
                temperature=config.TEMPERATURE,
                max_output_tokens=config.MAX_OUTPUT_TOKENS,
            )
        response = await self.retry.execute(call, turn_limit("llm.max_retries"))
        if not response.text.strip():
            raise EmptyAnalysisError()

        parsed = parse_analysis_text(response.text)
        return AnalysisResponse(
            id=new_analysis_id(),
            analysis=parsed.analysis,
            insights=parsed.insights,
            recommendations=parsed.recommendations,
            anomalies=parsed.anomalies,
            confidence=parsed.confidence,
            data_quality=parsed.data_quality,
            metadata={
                "queries_executed": 0,
                "time_range": _time_range_dict(request.time_range),
                "mode": "sampling",
                "data_path": request.data_path,
                "analysis_type": request.analysis_type,
                "record_count": len(records),
            },
            usage=response.usage.to_dict(),
        )

    async def quick_analysis(self, data_path: str, analysis_type: str,
                             time_range: Optional[tuple[datetime, datetime]] = None) -> AnalysisResponse:
        return await self.analyze(AnalysisRequest(
            data_path=data_path, analysis_type=analysis_type, time_range=time_range,
        ))

    async def detect_anomalies(self, data_path: str,
                               time_range: Optional[tuple[datetime, datetime]] = None) -> list[dict]:
        result = await self.analyze(AnalysisRequest(
            data_path=data_path,
            analysis_type="anomaly",
            time_range=time_range,
            custom_prompt=ANOMALY_PROMPT,
        ))
        return result.anomalies

    async def test_connection(self) -> dict:
        """Probe the reasoning agent. Returns ``{"success": bool, "error"?: str}``."""
        try:
            response = await self.adapter.generate(
                self.model, CONNECTION_TEST_PROMPT, max_output_tokens=50,
            )
        except Exception as e:
            logger.warning(f"Connection test failed: {e}")
            return {"success": False, "error": str(e)}
        if "successful" in response.text.lower():
            return {"success": True}
        return {"success": False, "error": "Unexpected response from the reasoning agent"}


def create_orchestrator(
    verbose: bool = False,
    model: str | None = None,
    adapter: LLMAdapter | None = None,
    log_to_file: bool = False,
) -> AnalysisOrchestrator:
    """Factory function to create a fully wired orchestrator.

    Args:
        verbose: If True, show debug logging on the console.
        model: Model id (default: config ``model``).
        adapter: LLM adapter to use instead of the Anthropic one.
        log_to_file: Write one log file per conversation under the log dir.

    Returns:
        Configured AnalysisOrchestrator instance.
    """
    from data_ops.analysis_store import AnalysisStore
    from data_ops.history_client import HistoryClient
    from data_ops.live_data import LiveStateTree
    from data_ops.query_engine import DuckDBQueryEngine

    setup_logging(verbose=verbose)
    if adapter is None:
        api_key = get_api_key()
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY is not set. Add it to .env or the environment.")
        adapter = AnthropicAdapter(
            api_key, base_url=config.LLM_BASE_URL, timeout_ms=config.LLM_TIMEOUT_MS,
        )

    dispatcher = ToolDispatcher(
        engine=DuckDBQueryEngine(),
        live_tree=LiveStateTree(self_id=config.SELF_ID),
        regimens=config.get_regimens(),
    )
    return AnalysisOrchestrator(
        adapter=adapter,
        dispatcher=dispatcher,
        store=ConversationStore(),
        analysis_store=AnalysisStore(),
        history=HistoryClient(),
        model=model,
        log_to_file=log_to_file,
    )
