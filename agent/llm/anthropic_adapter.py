"""Anthropic adapter — wraps the ``anthropic`` SDK for Claude models.

This is the **only** module that imports the ``anthropic`` package.

Key Anthropic API details the adapter hides:
- System prompt is a separate ``system`` parameter, not a message.
- Strict user/assistant alternation required — consecutive same-role messages
  must be merged.
- Tool results are sent inside a ``user`` message with ``tool_result`` blocks.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import anthropic

from ..conversation import (
    AgentTurn,
    ContentBlock,
    TextBlock,
    ToolResultTurn,
    ToolUseBlock,
    Turn,
    UserTurn,
)
from ..retry import OutcomeKind, classify_failure
from .base import FunctionSchema, LLMAdapter, LLMResponse, UsageMetadata

logger = logging.getLogger("bosun")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_tools(schemas: list[FunctionSchema] | None) -> list[dict] | None:
    """Convert FunctionSchema list to Anthropic tool format."""
    if not schemas:
        return None
    return [
        {
            "name": s.name,
            "description": s.description,
            "input_schema": s.parameters,
        }
        for s in schemas
    ]


def _turn_to_message(turn: Turn) -> dict:
    """Convert one conversation turn into an Anthropic message dict."""
    if isinstance(turn, UserTurn):
        return {"role": "user", "content": turn.content}
    if isinstance(turn, AgentTurn):
        content: list[dict] = []
        for block in turn.blocks:
            if isinstance(block, TextBlock):
                if block.text:
                    content.append({"type": "text", "text": block.text})
            else:
                content.append(
                    {
                        "type": "tool_use",
                        "id": block.id,
                        "name": block.name,
                        "input": block.input,
                    }
                )
        if not content:
            content = [{"type": "text", "text": "(no content)"}]
        return {"role": "assistant", "content": content}
    if isinstance(turn, ToolResultTurn):
        return {
            "role": "user",
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": r.tool_use_id,
                    "content": r.content,
                    "is_error": r.is_error,
                }
                for r in turn.results
            ],
        }
    raise TypeError(f"Unsupported turn type: {type(turn).__name__}")


def _ensure_alternation(messages: list[dict]) -> list[dict]:
    """Merge consecutive same-role messages to satisfy Anthropic's alternation rule."""
    if not messages:
        return messages

    merged: list[dict] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev_content = prev.get("content", "")
            new_content = msg.get("content", "")

            # Normalize to list form for merging
            if isinstance(prev_content, str):
                prev_list = [{"type": "text", "text": prev_content}] if prev_content else []
            else:
                prev_list = list(prev_content)

            if isinstance(new_content, str):
                new_list = [{"type": "text", "text": new_content}] if new_content else []
            else:
                new_list = list(new_content)

            prev["content"] = prev_list + new_list
        else:
            merged.append(dict(msg))

    return merged


def turns_to_messages(turns: Sequence[Turn]) -> list[dict]:
    return _ensure_alternation([_turn_to_message(t) for t in turns])


def _parse_response(raw) -> LLMResponse:
    """Parse an Anthropic Messages response into a provider-agnostic LLMResponse."""
    blocks: list[ContentBlock] = []
    for block in raw.content:
        if block.type == "text":
            blocks.append(TextBlock(block.text))
        elif block.type == "tool_use":
            blocks.append(
                ToolUseBlock(
                    id=block.id,
                    name=block.name,
                    input=block.input if isinstance(block.input, dict) else {},
                )
            )

    usage = UsageMetadata()
    if raw.usage:
        usage = UsageMetadata(
            input_tokens=getattr(raw.usage, "input_tokens", 0) or 0,
            output_tokens=getattr(raw.usage, "output_tokens", 0) or 0,
            cached_tokens=getattr(raw.usage, "cache_read_input_tokens", 0) or 0,
        )

    return LLMResponse(
        blocks=blocks,
        usage=usage,
        stop_reason=getattr(raw, "stop_reason", None),
        raw=raw,
    )


# ---------------------------------------------------------------------------
# AnthropicAdapter
# ---------------------------------------------------------------------------


class AnthropicAdapter(LLMAdapter):
    """Adapter that wraps ``anthropic.AsyncAnthropic`` for Claude models."""

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str | None = None,
        timeout_ms: int = 300_000,
    ):
        kwargs: dict[str, Any] = {
            "api_key": api_key,
            "timeout": timeout_ms / 1000.0,
            # Retries are handled by RetryExecutor
            "max_retries": 0,
        }
        if base_url:
            kwargs["base_url"] = base_url
        self._client = anthropic.AsyncAnthropic(**kwargs)

    # -- LLMAdapter interface --------------------------------------------------

    async def create_message(
        self,
        model: str,
        system_prompt: str,
        turns: Sequence[Turn],
        tools: list[FunctionSchema] | None = None,
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": turns_to_messages(turns),
            "max_tokens": max_output_tokens or 8192,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if temperature is not None:
            kwargs["temperature"] = temperature
        anthropic_tools = _build_tools(tools)
        if anthropic_tools:
            kwargs["tools"] = anthropic_tools

        raw = await self._client.messages.create(**kwargs)
        response = _parse_response(raw)
        logger.debug(
            "Anthropic call: stop=%s in=%d out=%d tool_uses=%d",
            response.stop_reason,
            response.usage.input_tokens,
            response.usage.output_tokens,
            len(response.tool_calls),
        )
        return response

    def classify_failure(self, exc: BaseException) -> OutcomeKind:
        """Map SDK exceptions onto retry outcome kinds."""
        if isinstance(exc, anthropic.RateLimitError):
            return OutcomeKind.RATE_LIMITED
        if isinstance(exc, anthropic.APIStatusError) and exc.status_code in (503, 529):
            return OutcomeKind.OVERLOADED
        # Anything else: fall back to the error body and message text
        return classify_failure(exc)

    # -- Convenience properties ------------------------------------------------

    @property
    def client(self):
        """Escape hatch — the underlying ``anthropic.AsyncAnthropic`` client."""
        return self._client
