"""In-memory tree of the latest value of every path, per context.

Layout mirrors the usual sensor-data model::

    {"vessels": {"<vessel id>": {"navigation": {"position": {
        "value": {...}, "timestamp": "...", "$source": "..."}}}}}

``snapshot()`` projects the tree for the agent's ``get_live_snapshot``
tool. Every projection goes through ``sanitize_tree``, a depth-bounded
walk that also drops metadata keys. The depth bound is the only cycle
guard: a self-referencing value is cut off with a marker string once the
walk reaches ``max_depth``.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timezone
from typing import Any, Optional

import numpy as np

# Keys carrying bookkeeping, not data
METADATA_KEYS = frozenset({"_updateTimes", "_sources", "meta"})
DEPTH_MARKER = "[Max depth reached]"
FUNCTION_MARKER = "[Function]"
# Deep enough for vessels.<id>.<group>.<sub>.<leaf>.value.<field>
SNAPSHOT_MAX_DEPTH = 6

SELF_SCOPE = "vessels.self"
ALL_VESSELS_SCOPE = "vessels.*"


def sanitize_tree(value: Any, max_depth: int = 3, current_depth: int = 0) -> Any:
    """Return a JSON-safe copy of *value*, cut off at *max_depth*.

    Containers met at ``current_depth >= max_depth`` are replaced by
    ``DEPTH_MARKER``; scalars are kept at any depth.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if callable(value):
        return FUNCTION_MARKER
    if isinstance(value, dict):
        if current_depth >= max_depth:
            return DEPTH_MARKER
        return {
            str(k): sanitize_tree(v, max_depth, current_depth + 1)
            for k, v in value.items()
            if k not in METADATA_KEYS
        }
    if isinstance(value, (list, tuple, set)):
        if current_depth >= max_depth:
            return DEPTH_MARKER
        return [sanitize_tree(v, max_depth, current_depth + 1) for v in value]
    return str(value)


def _split_context(context: str) -> tuple[str, str]:
    """``"vessels.urn:mrn:imo:mmsi:1"`` -> ``("vessels", "urn:mrn:imo:mmsi:1")``."""
    root, _, ident = context.partition(".")
    if not root or not ident:
        raise ValueError(f"Invalid context: {context!r}")
    return root, ident


class LiveStateTree:
    """Latest-value tree fed by the host; read by the live snapshot tool."""

    def __init__(self, self_id: Optional[str] = None):
        self.self_id = self_id
        self._tree: dict[str, Any] = {}
        self._lock = threading.Lock()

    def _resolve(self, context: str) -> Optional[tuple[str, str]]:
        root, ident = _split_context(context)
        if ident == "self":
            if not self.self_id:
                return None
            ident = self.self_id
        return root, ident

    def update(
        self,
        context: str,
        path: str,
        value: Any,
        timestamp: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        """Store *value* as the latest value of *path* under *context*."""
        resolved = self._resolve(context)
        if resolved is None:
            raise ValueError("Cannot update 'self' before self_id is known")
        root, ident = resolved
        leaf = {
            "value": value,
            "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
            "$source": source or "unknown",
        }
        with self._lock:
            node = self._tree.setdefault(root, {}).setdefault(ident, {})
            *parents, last = path.split(".")
            for part in parents:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[last] = leaf

    def get_path(self, dotted: str) -> Any:
        """Walk the tree along *dotted*; None if any segment is missing."""
        with self._lock:
            node: Any = self._tree
            for part in dotted.split("."):
                if not isinstance(node, dict):
                    return None
                node = node.get(part)
            return node

    def contexts(self, root: str = "vessels") -> list[str]:
        with self._lock:
            return list(self._tree.get(root, {}).keys())

    def snapshot(self, paths: Optional[list[str]] = None, scope: Optional[str] = None) -> dict:
        """Project the live tree for one context, all vessels, or a path list.

        Args:
            paths: Dotted paths to include; ``None``/empty means everything.
            scope: ``"vessels.self"`` (default), ``"vessels.*"`` for every
                vessel, or an explicit context such as
                ``"vessels.urn:mrn:imo:mmsi:123456789"``.
        """
        context = scope or SELF_SCOPE
        now = datetime.now(timezone.utc).isoformat()

        if context == ALL_VESSELS_SCOPE:
            vessel_ids = [v for v in self.contexts() if v != "self"]
            if not paths:
                data = {v: self.get_path(f"vessels.{v}") for v in vessel_ids}
            else:
                data = {}
                for path in paths:
                    for v in vessel_ids:
                        value = self.get_path(f"vessels.{v}.{path}")
                        if value is not None:
                            data.setdefault(path, {})[v] = value
            return {
                "timestamp": now,
                "context": ALL_VESSELS_SCOPE,
                "requested_paths": paths or None,
                "data": sanitize_tree(data, SNAPSHOT_MAX_DEPTH),
            }

        resolved = self._resolve(context)
        if resolved is None:
            return {"timestamp": now, "context": context, "requested_paths": paths or None, "data": {}}
        root, ident = resolved
        full_context = f"{root}.{ident}"

        if not paths:
            data = self.get_path(full_context) or {}
        else:
            data = {path: self.get_path(f"{full_context}.{path}") for path in paths}
        return {
            "timestamp": now,
            "context": full_context,
            "requested_paths": paths or None,
            "data": sanitize_tree(data, SNAPSHOT_MAX_DEPTH),
        }
