import json
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Secret: stays in .env (ANTHROPIC_API_KEY)

# User config: loaded from ~/.bosun/config.json (primary)
# or project-root config.json (fallback).
CONFIG_PATH = Path.home() / ".bosun" / "config.json"
_LOCAL_CONFIG_PATH = Path(__file__).resolve().parent / "config.json"
_user_config: dict = {}


def _load_config() -> dict:
    # Project-local config.json as base, user home config overlaid on top
    merged: dict = {}
    for path in (_LOCAL_CONFIG_PATH, CONFIG_PATH):
        if path is not None and path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    merged.update(json.load(f))
            except (json.JSONDecodeError, OSError):
                pass
    return merged


def get(key: str, default=None):
    """Get a config value by dot-separated key. E.g. get('retry.max_jitter_s', 1.0)"""
    keys = key.split(".")
    val = _user_config
    for k in keys:
        if isinstance(val, dict):
            val = val.get(k)
        else:
            return default
    return val if val is not None else default


_user_config = _load_config()


# ---- Data directory -----------------------------------------------------------
# Single source of truth for the base app directory (logs, analysis history).
# Priority: BOSUN_DIR env var > "data_dir" config key > ~/.bosun

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Return the resolved base data directory.

    Resolution order:
    1. ``BOSUN_DIR`` environment variable (highest — useful for CI/Docker)
    2. ``"data_dir"`` key in config.json
    3. ``~/.bosun`` (default)
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir
    env_val = os.environ.get("BOSUN_DIR")
    if env_val:
        _data_dir = Path(env_val).expanduser().resolve()
    else:
        configured = get("data_dir")
        if configured:
            _data_dir = Path(configured).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".bosun"
    return _data_dir


def _reset_data_dir() -> None:
    """Reset the cached data directory (for testing only)."""
    global _data_dir
    _data_dir = None


def get_api_key() -> str | None:
    """Return the Anthropic API key from the environment."""
    return os.getenv("ANTHROPIC_API_KEY")


# ---- Reasoning agent ----------------------------------------------------------
MODEL = get("model", "claude-sonnet-4-20250514")
TEMPERATURE = get("temperature", 0.0)
MAX_OUTPUT_TOKENS = get("max_output_tokens", 8000)
LLM_BASE_URL = get("llm_base_url")
LLM_TIMEOUT_MS = get("llm_timeout_ms", 300_000)

# ---- Data sources --------------------------------------------------------------
# Root of the parquet tree: <root>/<context>/<path as dirs>/*.parquet
PARQUET_ROOT = get("parquet_root", str(get_data_dir() / "parquet"))
TIMESTAMP_COLUMN = get("timestamp_column", "signalk_timestamp")
SELF_CONTEXT = get("self_context", "vessels.self")
SELF_ID = get("self_id")
HISTORY_API_URL = get("history_api_url", "http://localhost:3000/api/history/values")

# ---- Retry / backoff ------------------------------------------------------------
RATE_LIMIT_BASE_S = get("retry.rate_limit_base_s", 5.0)
OVERLOAD_BASE_S = get("retry.overload_base_s", 2.0)
MAX_JITTER_S = get("retry.max_jitter_s", 1.0)

# ---- Conversation store ------------------------------------------------------
CONVERSATION_MAX_ENTRIES = get("conversation_store.max_entries", 200)
CONVERSATION_IDLE_TIMEOUT_S = get("conversation_store.idle_timeout_seconds", 86_400)


def get_regimens() -> list[dict]:
    """Return configured regimens as ``[{name, keywords, paths}, ...]``."""
    regimens = get("regimens", [])
    return [r for r in regimens if isinstance(r, dict) and r.get("name")]


# ---- Setting descriptions (single source of truth for UI) --------------------
# Keys match config.json keys. Nested keys use dot notation (e.g. "retry.max_jitter_s").
CONFIG_DESCRIPTIONS: dict[str, str] = {
    # Reasoning agent
    "model": "Model id used for every analysis call.",
    "temperature": "Sampling temperature for analysis calls. 0.0 keeps answers reproducible.",
    "max_output_tokens": "Maximum output tokens per agent response.",
    "llm_base_url": "Optional base URL for an Anthropic-compatible endpoint.",
    "llm_timeout_ms": "Per-request timeout for the reasoning agent, in milliseconds.",
    # Data sources
    "parquet_root": "Root directory of the parquet tree queried by the agent.",
    "timestamp_column": "Name of the timestamp column in the parquet files.",
    "self_context": "Context label stamped on records fetched from the history endpoint.",
    "self_id": "Vessel id that 'self' resolves to in the live state tree (e.g. urn:mrn:imo:mmsi:123456789).",
    "history_api_url": "Historical values REST endpoint used in sampling mode.",
    "regimens": "Named boolean regimens: list of {name, keywords, paths}. Keywords gate the find_episodes tool.",
    # Retry
    "retry.rate_limit_base_s": "Base backoff delay (seconds) after a rate-limit response.",
    "retry.overload_base_s": "Base backoff delay (seconds) after an overloaded response.",
    "retry.max_jitter_s": "Upper bound of the uniform random jitter added to every backoff.",
    # Conversations
    "conversation_store.max_entries": "Maximum resumable conversations kept in memory. Least recently used are evicted first.",
    "conversation_store.idle_timeout_seconds": "Conversations idle longer than this are evicted. 0 disables expiry.",
    # Limits
    "turn_limits": "Override loop limits (e.g. 'analysis.max_rounds', 'follow_up.max_rounds'). See agent/limits.py TURNS.",
    "truncation": "Override text character limits. Values are integers; 0 means no truncation. See agent/limits.py.",
    "truncation_items": "Override item count limits. Values are integers; 0 means no truncation. See agent/limits.py.",
    # Logging
    "console_format": "Console log format: 'simple' (default), 'full', or 'clean' (no console output).",
}


def reload_config() -> None:
    """Re-read config from disk and reassign all module-level constants.

    Call this after writing config.json to make new values take effect
    without restarting the server. Orchestrators already built keep their
    current adapter and model; only new ones pick up changes.
    """
    global _user_config
    global MODEL, TEMPERATURE, MAX_OUTPUT_TOKENS, LLM_BASE_URL, LLM_TIMEOUT_MS
    global PARQUET_ROOT, TIMESTAMP_COLUMN, SELF_CONTEXT, SELF_ID, HISTORY_API_URL
    global RATE_LIMIT_BASE_S, OVERLOAD_BASE_S, MAX_JITTER_S
    global CONVERSATION_MAX_ENTRIES, CONVERSATION_IDLE_TIMEOUT_S

    load_dotenv(override=True)

    _user_config = _load_config()
    _reset_data_dir()

    MODEL = get("model", "claude-sonnet-4-20250514")
    TEMPERATURE = get("temperature", 0.0)
    MAX_OUTPUT_TOKENS = get("max_output_tokens", 8000)
    LLM_BASE_URL = get("llm_base_url")
    LLM_TIMEOUT_MS = get("llm_timeout_ms", 300_000)
    PARQUET_ROOT = get("parquet_root", str(get_data_dir() / "parquet"))
    TIMESTAMP_COLUMN = get("timestamp_column", "signalk_timestamp")
    SELF_CONTEXT = get("self_context", "vessels.self")
    SELF_ID = get("self_id")
    HISTORY_API_URL = get("history_api_url", "http://localhost:3000/api/history/values")
    RATE_LIMIT_BASE_S = get("retry.rate_limit_base_s", 5.0)
    OVERLOAD_BASE_S = get("retry.overload_base_s", 2.0)
    MAX_JITTER_S = get("retry.max_jitter_s", 1.0)
    CONVERSATION_MAX_ENTRIES = get("conversation_store.max_entries", 200)
    CONVERSATION_IDLE_TIMEOUT_S = get("conversation_store.idle_timeout_seconds", 86_400)

    # Refresh truncation and turn limit overrides
    from agent import limits

    limits.reload()
