"""Analysis store — one JSON file per finished analysis.

Files live under ``<data_dir>/analysis-history/<analysis id>.json``.
Saving is best effort: a failed write is logged and the analysis is still
returned to the caller.
"""

import json
import logging
import re
import threading
from pathlib import Path
from typing import Optional

import config
from agent.logging import log_error

logger = logging.getLogger("bosun")

_SAFE_ID = re.compile(r"^[A-Za-z0-9_\-]+$")


class AnalysisStore:
    def __init__(self, path: Optional[Path] = None):
        if path is None:
            path = config.get_data_dir() / "analysis-history"
        self._dir = Path(path)
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._dir

    def _file(self, analysis_id: str) -> Optional[Path]:
        # Ids are used as file names; anything else is treated as unknown
        if not _SAFE_ID.match(analysis_id):
            return None
        return self._dir / f"{analysis_id}.json"

    def _load(self, path: Path) -> Optional[dict]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning(f"Skipping unreadable analysis file {path.name}")
            return None

    def put(self, analysis: dict) -> bool:
        """Persist *analysis* (must carry an ``id``). Returns False on failure."""
        path = self._file(str(analysis.get("id", "")))
        if path is None:
            logger.warning(f"Refusing to save analysis with invalid id {analysis.get('id')!r}")
            return False
        with self._lock:
            try:
                self._dir.mkdir(parents=True, exist_ok=True)
                with open(path, "w", encoding="utf-8") as f:
                    json.dump(analysis, f, indent=2, default=str)
            except OSError as e:
                log_error("Failed to save analysis to history", exc=e,
                          context={"analysis_id": analysis.get("id")})
                return False
        logger.debug(f"Analysis saved to history: {analysis['id']}")
        return True

    def list_recent(self, limit: int = 20) -> list[dict]:
        """Most recent analyses first, by their ``timestamp`` field."""
        with self._lock:
            if not self._dir.exists():
                return []
            entries = [e for e in (self._load(p) for p in self._dir.glob("*.json")) if e]
        entries.sort(key=lambda e: str(e.get("timestamp", "")), reverse=True)
        return entries[:limit]

    def get(self, analysis_id: str) -> Optional[dict]:
        path = self._file(analysis_id)
        if path is None:
            return None
        with self._lock:
            if not path.exists():
                return None
            return self._load(path)

    def delete(self, analysis_id: str) -> bool:
        path = self._file(analysis_id)
        if path is None:
            return False
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
            return True
