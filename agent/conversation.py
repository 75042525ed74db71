"""Conversation model — turns exchanged between the caller and the agent.

A conversation is an append-only list of turns:

    UserTurn        — question or data payload from the caller
    AgentTurn       — ordered text / tool-use blocks from the agent
    ToolResultTurn  — one result per tool use of the preceding AgentTurn

``Conversation.append`` enforces the pairing rule: every tool use of an
AgentTurn is answered, in order and one-to-one, by the ToolResultTurn that
immediately follows it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool call issued by the agent. Never mutated after issue."""
    id: str
    name: str
    input: dict = field(default_factory=dict)


# The agent's structured request to run a tool
ToolInvocation = ToolUseBlock

ContentBlock = Union[TextBlock, ToolUseBlock]


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class UserTurn:
    content: str


@dataclass(frozen=True)
class AgentTurn:
    blocks: tuple[ContentBlock, ...] = ()

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.blocks if isinstance(b, TextBlock) and b.text)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]


@dataclass(frozen=True)
class ToolResultTurn:
    results: tuple[ToolResult, ...] = ()


Turn = Union[UserTurn, AgentTurn, ToolResultTurn]


@dataclass
class Conversation:
    """Ordered turn history for one conversation id."""
    id: str
    turns: list[Turn] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    # Free-form facts about the request, e.g. the data path or time range
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def pending_tool_use_ids(self) -> list[str]:
        """Tool use ids of the last AgentTurn that still await results."""
        if not self.turns:
            return []
        last = self.turns[-1]
        if isinstance(last, AgentTurn):
            return [b.id for b in last.tool_uses]
        return []

    def append(self, turn: Turn) -> None:
        """Append *turn*, raising ``ValueError`` if it breaks tool-use pairing."""
        pending = self.pending_tool_use_ids

        if isinstance(turn, ToolResultTurn):
            got = [r.tool_use_id for r in turn.results]
            if not pending:
                raise ValueError("Tool results without a preceding tool use")
            if got != pending:
                raise ValueError(
                    f"Tool results {got} do not answer pending tool uses {pending}"
                )
        elif pending:
            raise ValueError(
                f"{type(turn).__name__} appended while tool uses {pending} are unanswered"
            )
        elif isinstance(turn, AgentTurn):
            if not self.turns or isinstance(self.turns[-1], AgentTurn):
                raise ValueError("AgentTurn must follow a UserTurn or ToolResultTurn")
        elif not isinstance(turn, UserTurn):
            raise TypeError(f"Unsupported turn type: {type(turn).__name__}")

        self.turns.append(turn)

    def user_texts(self) -> list[str]:
        return [t.content for t in self.turns if isinstance(t, UserTurn)]

    def agent_text(self) -> str:
        """Concatenated narrative of every AgentTurn, blank-line separated."""
        return "\n\n".join(t.text for t in self.turns if isinstance(t, AgentTurn) and t.text)
