"""Named numeric limits with config.json overrides.

Three registries share one shape:

- ``TEXT``  (config key ``truncation``): character limits for log lines
  and tool results.
- ``ITEMS`` (config key ``truncation_items``): item counts for previews.
- ``TURNS`` (config key ``turn_limits``): agent loop and retry budgets.

An override of ``0`` on a text or item limit disables truncation for it.
Unknown names raise ``KeyError`` so typos fail loudly.
"""

from __future__ import annotations

from typing import Iterable, Sequence, TypeVar

import config

T = TypeVar("T")


class LimitRegistry:
    """Defaults for one family of limits, overlaid with config overrides."""

    def __init__(self, config_key: str, defaults: dict[str, int]) -> None:
        self.config_key = config_key
        self.defaults = dict(defaults)
        self._overrides: dict[str, int] = {}

    def reload(self) -> None:
        overrides = config.get(self.config_key, {})
        self._overrides = dict(overrides) if isinstance(overrides, dict) else {}

    def __getitem__(self, name: str) -> int:
        if name not in self.defaults:
            raise KeyError(f"Unknown {self.config_key} limit: {name!r}")
        return int(self._overrides.get(name, self.defaults[name]))

    def __contains__(self, name: object) -> bool:
        return name in self.defaults


TEXT = LimitRegistry("truncation", {
    "console.query": 500,
    "console.text": 200,
    "console.error": 500,
    "console.args": 300,
    "tool.result": 60_000,
    "tool.error": 1_000,
    # Regimen list inside the find_episodes schema description
    "schema.regimens": 500,
})

ITEMS = LimitRegistry("truncation_items", {
    "items.query_preview_rows": 200,
    "items.snapshot_paths": 100,
    "items.episodes": 50,
    "items.recent_user_turns": 3,
})

TURNS = LimitRegistry("turn_limits", {
    "analysis.max_rounds": 10,
    "follow_up.max_rounds": 5,
    # Attempts per reasoning-agent call, first try included
    "llm.max_retries": 5,
})


def reload() -> None:
    """Re-read overrides for every registry. Called by ``config.reload_config()``."""
    for registry in (TEXT, ITEMS, TURNS):
        registry.reload()


def turn_limit(name: str) -> int:
    return TURNS[name]


def trunc(text: str, limit_name: str) -> str:
    """Cut *text* to the named character limit, ending in ``"..."`` when cut."""
    n = TEXT[limit_name]
    if n <= 0 or len(text) <= n:
        return text
    return text[: max(n - 3, 0)] + "..."


def trunc_items(items: Sequence[T], limit_name: str) -> tuple[list[T], int]:
    """Return ``(kept, total)`` where *kept* holds at most the named item count."""
    n = ITEMS[limit_name]
    kept = list(items) if n <= 0 else list(items[:n])
    return kept, len(items)


def join_labels(labels: Iterable[object], limit_name: str) -> str:
    text = ", ".join(str(label) for label in labels)
    return trunc(text, limit_name) if text else "(none)"


reload()
