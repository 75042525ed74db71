"""Provider-agnostic types and abstract base class for LLM adapters.

All agent code should depend on these types, never on provider-specific SDKs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..conversation import ContentBlock, TextBlock, ToolUseBlock, Turn, UserTurn
from ..retry import OutcomeKind, classify_failure


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class UsageMetadata:
    """Normalized token counts."""
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0

    def add(self, other: "UsageMetadata") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cached_tokens += other.cached_tokens

    def to_dict(self) -> dict:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass
class LLMResponse:
    """Provider-agnostic response from an LLM call.

    Attributes:
        blocks: Ordered text / tool-use blocks, as the agent emitted them.
        usage: Token usage for this call.
        stop_reason: Provider stop reason, when available.
        raw: The original provider-specific response object.
    """
    blocks: list[ContentBlock] = field(default_factory=list)
    usage: UsageMetadata = field(default_factory=UsageMetadata)
    stop_reason: str | None = None
    raw: Any = None

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.blocks if isinstance(b, TextBlock) and b.text)

    @property
    def tool_calls(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]


@dataclass
class FunctionSchema:
    """Wraps a tool/function schema dict for type clarity.

    The ``parameters`` dict is already JSON-schema-shaped and provider-agnostic.
    """
    name: str
    description: str
    parameters: dict


# ---------------------------------------------------------------------------
# LLMAdapter ABC
# ---------------------------------------------------------------------------

class LLMAdapter(ABC):
    """Abstract interface that every LLM provider adapter must implement."""

    @abstractmethod
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
        """Send the full turn history and return the agent's next response."""

    async def generate(
        self,
        model: str,
        contents: str,
        *,
        system_prompt: str = "",
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> LLMResponse:
        """One-shot generation without tools or history."""
        return await self.create_message(
            model,
            system_prompt,
            [UserTurn(contents)],
            None,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )

    def classify_failure(self, exc: BaseException) -> OutcomeKind:
        """Map a provider exception to a retry outcome kind."""
        return classify_failure(exc)
