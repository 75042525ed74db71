"""
Logging configuration for bosun.

Two logging destinations:

  - Console: DEBUG if --verbose, WARNING+ otherwise
  - File: always DEBUG level, one file per analysis conversation

Format: "timestamp | level | name | conversation_id | tag | message"

Config console_format options:
  - "simple" — (default) bare messages for DEBUG/INFO, [LEVEL] prefix for WARNING+
  - "full"   — same structured format as the file handler
  - "clean"  — no console output at all (file logging still active)

Notable events are tagged with ``extra=tagged("...")`` so they can be
grepped out of the log files later (tool calls, retries, analysis
lifecycle).

Log files are stored in ~/.bosun/logs/.
"""

import logging
import sys
import traceback
from datetime import datetime
from typing import Optional

from config import get_data_dir


LOGGER_NAME = "bosun"

# Log directory
LOG_DIR = get_data_dir() / "logs"

_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(session_id)s | %(log_tag)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def tagged(tag: str) -> dict:
    """Return ``extra`` dict for logger calls: ``logger.debug("...", extra=tagged("x"))``."""
    return {"log_tag": tag}


# Module-level state (shared across re-inits)
_session_filter: Optional["_SessionFilter"] = None


class _SessionFilter(logging.Filter):
    """Injects the active conversation id into every log record."""

    def __init__(self) -> None:
        super().__init__()
        self.session_id = ""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id or "-"
        if not hasattr(record, "log_tag"):
            record.log_tag = ""
        return True


class _ConsoleFormatter(logging.Formatter):
    """Console formatter: shows [LEVEL] prefix only for WARNING and above."""

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return f"  [{record.levelname}] {record.getMessage()}"
        return f"  {record.getMessage()}"


def attach_log_file(conversation_id: str) -> None:
    """Attach a per-conversation file handler.

    Creates or appends to <log dir>/{conversation_id}.log.
    """
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    log_file = LOG_DIR / f"{conversation_id}.log"

    logger = logging.getLogger(LOGGER_NAME)
    # Only one file handler at a time
    for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
        logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)

    logger.info("=" * 60)
    logger.info(f"Conversation {conversation_id} log opened at {datetime.now().isoformat()}")


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure console logging for bosun.

    File handlers are attached later by ``attach_log_file()`` once a
    conversation id is known.

    Args:
        verbose: If True, show DEBUG level on console; otherwise WARNING+.

    Returns:
        Configured logger instance.
    """
    global _session_filter

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handler level

    # Clear existing handlers (in case of re-init)
    logger.handlers.clear()

    # Reuse existing filter to preserve the conversation id across re-inits
    if _session_filter is None:
        _session_filter = _SessionFilter()
    logger.addFilter(_session_filter)

    import config as _config
    console_format = _config.get("console_format", "simple")

    if console_format != "clean":
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
        if console_format == "full":
            console_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
        else:
            console_handler.setFormatter(_ConsoleFormatter())
        logger.addHandler(console_handler)

    return logger


def set_session_id(conversation_id: str) -> None:
    """Set the conversation id included in all subsequent log lines."""
    global _session_filter
    if _session_filter is None:
        # Logger not set up yet; attach the filter now
        _session_filter = _SessionFilter()
        logging.getLogger(LOGGER_NAME).addFilter(_session_filter)
    _session_filter.session_id = conversation_id


def log_error(
    message: str,
    exc: Optional[BaseException] = None,
    context: Optional[dict] = None,
) -> None:
    """Log an error with full details including stack trace.

    Args:
        message: Error description
        exc: Optional exception to include stack trace from
        context: Optional dict of additional context (tool name, args, etc.)
    """
    lines = [message]

    if context:
        lines.append("Context:")
        for key, value in context.items():
            lines.append(f"  {key}: {value}")

    if exc is not None:
        lines.append(f"Exception type: {type(exc).__name__}")
        lines.append(f"Exception message: {exc}")
        lines.append("Stack trace:")
        lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))

    logging.getLogger(LOGGER_NAME).error("\n".join(lines), extra=tagged("error"))


def log_tool_call(tool_name: str, tool_args: dict) -> None:
    """Log a tool call for debugging."""
    from .limits import trunc

    logging.getLogger(LOGGER_NAME).debug(
        f"Tool call: {tool_name}({trunc(str(tool_args), 'console.args')})",
        extra=tagged("tool_call"),
    )


def log_tool_result(tool_name: str, content: str, success: bool) -> None:
    """Log a tool result."""
    from .limits import trunc

    logger = logging.getLogger(LOGGER_NAME)
    if success:
        logger.debug(f"Tool result: {tool_name} -> success", extra=tagged("tool_result"))
    else:
        logger.warning(
            f"Tool result: {tool_name} -> error: {trunc(content, 'console.error')}",
            extra=tagged("tool_result"),
        )


def log_analysis_end(token_usage: dict, queries_executed: int) -> None:
    """Log the end of an analysis call with usage stats.

    Args:
        token_usage: Dict with input_tokens, output_tokens
        queries_executed: Number of run_query calls in this analysis
    """
    msg = (
        f"Analysis finished. Tokens: "
        f"in: {token_usage.get('input_tokens', 0):,}, "
        f"out: {token_usage.get('output_tokens', 0):,}, "
        f"queries: {queries_executed}"
    )
    logging.getLogger(LOGGER_NAME).info(msg, extra=tagged("analysis_end"))
