"""Error taxonomy for the analysis pipeline.

Which errors the pipeline recovers from and which reach the caller:

- ``QueryValidationError`` — a generated query failed the read-only check.
  Rendered as the tool's result text; the conversation continues.
- ``TransientUpstreamError`` — rate limit or overload. Recovered by the
  retry executor until the retry budget is spent.
- ``ToolExecutionError`` — anything else going wrong inside a tool.
  Rendered as the tool's result text.
- ``ConversationNotFoundError`` — follow-up on an unknown conversation id.
- ``EmptyAnalysisError`` — the round loop produced no narrative text.
- ``AnalysisFailedError`` — terminal wrapper raised by ``analyze()``.
"""

from __future__ import annotations

ANALYSIS_FAILED_PREFIX = "Analysis failed: "


class AnalysisError(Exception):
    """Base class for all errors raised by the analysis pipeline."""


class QueryValidationError(AnalysisError):
    """Raised when a query violates the read-only contract."""

    def __init__(self, message: str, keyword: str | None = None):
        super().__init__(message)
        self.keyword = keyword


class TransientUpstreamError(AnalysisError):
    """An upstream call failed in a way that is worth retrying.

    ``kind`` is ``"rate_limited"`` or ``"overloaded"``.
    """

    def __init__(self, message: str, kind: str = "rate_limited"):
        super().__init__(message)
        self.kind = kind


class ToolExecutionError(AnalysisError):
    """A dispatched tool failed for a reason other than query validation."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class ConversationNotFoundError(AnalysisError):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class EmptyAnalysisError(AnalysisError):
    def __init__(self, message: str = "No analysis produced"):
        super().__init__(message)


class AnalysisFailedError(AnalysisError):
    """Terminal failure of a whole analysis request."""

    def __init__(self, cause: BaseException | str):
        detail = str(cause)
        if detail.startswith(ANALYSIS_FAILED_PREFIX):
            message = detail
        else:
            message = ANALYSIS_FAILED_PREFIX + detail
        super().__init__(message)


def is_terminal_failure(exc: BaseException) -> bool:
    """True when *exc* is already a pipeline error or carries the terminal prefix."""
    return isinstance(exc, AnalysisError) or str(exc).startswith(ANALYSIS_FAILED_PREFIX.rstrip())
