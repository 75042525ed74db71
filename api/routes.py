"""All REST endpoints for the FastAPI backend."""

import json
import logging
import os
import time
from typing import Optional

import config
from fastapi import APIRouter, HTTPException, Query

from agent.core import AnalysisOrchestrator, AnalysisRequest
from agent.errors import AnalysisError, ConversationNotFoundError
from .models import (
    AnalysisResult,
    AnalyzeRequest,
    ConfigUpdate,
    ConnectionResult,
    FollowUpRequest,
    LiveUpdate,
    ServerStatus,
)

logger = logging.getLogger("bosun")

router = APIRouter(prefix="/api")

# These are injected by app.py lifespan
orchestrator: Optional[AnalysisOrchestrator] = None
_start_time: float = 0.0


def _get_orchestrator() -> AnalysisOrchestrator:
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="Analysis agent is not configured. Set ANTHROPIC_API_KEY and restart.",
        )
    return orchestrator


def _get_analysis_store():
    store = _get_orchestrator().analysis_store
    if store is None:
        raise HTTPException(status_code=503, detail="Analysis history is not available")
    return store


# ---- Analysis ----

@router.post("/analyze")
async def analyze(req: AnalyzeRequest):
    """Run one analysis in sampling or database access mode."""
    orch = _get_orchestrator()
    time_range = None
    if req.time_range is not None:
        if req.time_range.end < req.time_range.start:
            raise HTTPException(status_code=400, detail="time_range.end must not be before time_range.start")
        time_range = (req.time_range.start, req.time_range.end)
    if req.use_database_access:
        if not (req.custom_prompt or req.data_path):
            raise HTTPException(status_code=400, detail="custom_prompt or data_path is required")
    elif not req.data_path:
        raise HTTPException(status_code=400, detail="data_path is required in sampling mode")

    request = AnalysisRequest(
        data_path=req.data_path,
        analysis_type=req.analysis_type,
        time_range=time_range,
        custom_prompt=req.custom_prompt,
        context=req.context,
        aggregation_method=req.aggregation_method,
        resolution=req.resolution,
        use_database_access=req.use_database_access,
    )
    try:
        result = await orch.analyze(request)
    except AnalysisError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return AnalysisResult(**result.to_dict()).model_dump()


@router.post("/analyze/follow-up")
async def follow_up(req: FollowUpRequest):
    """Ask a follow-up question on a database access conversation."""
    orch = _get_orchestrator()
    try:
        result = await orch.resume(req.conversation_id, req.question)
    except ConversationNotFoundError:
        raise HTTPException(
            status_code=404,
            detail="Conversation not found. Please start a new analysis.",
        )
    except AnalysisError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return AnalysisResult(**result.to_dict()).model_dump()


@router.get("/analyze/history")
async def list_history(limit: int = Query(default=20, ge=1, le=200)):
    """Most recent analyses first."""
    store = _get_analysis_store()
    return {"analyses": store.list_recent(limit)}


@router.get("/analyze/history/{analysis_id}")
async def get_history_entry(analysis_id: str):
    store = _get_analysis_store()
    entry = store.get(analysis_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Analysis '{analysis_id}' not found")
    return entry


@router.delete("/analyze/history/{analysis_id}", status_code=204)
async def delete_history_entry(analysis_id: str):
    store = _get_analysis_store()
    if not store.delete(analysis_id):
        raise HTTPException(status_code=404, detail=f"Analysis '{analysis_id}' not found")


@router.post("/analyze/test-connection")
async def test_connection():
    """Check that the reasoning agent answers."""
    result = await _get_orchestrator().test_connection()
    return ConnectionResult(**result).model_dump()


# ---- Live state ----

@router.post("/live/update", status_code=204)
async def live_update(req: LiveUpdate):
    """Store one latest value in the live state tree."""
    tree = _get_orchestrator().dispatcher.live_tree
    try:
        tree.update(req.context, req.path, req.value, timestamp=req.timestamp, source=req.source)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/live/snapshot")
async def live_snapshot(
    paths: Optional[str] = Query(default=None, description="Comma-separated dotted paths"),
    scope: Optional[str] = Query(default=None, description="vessels.self, vessels.* or an explicit context"),
):
    tree = _get_orchestrator().dispatcher.live_tree
    path_list = [p.strip() for p in paths.split(",") if p.strip()] if paths else None
    try:
        return tree.snapshot(path_list, scope)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ---- Config ----

@router.get("/config")
async def get_config():
    """Get current config (no secrets) with per-key descriptions."""
    from config import CONFIG_DESCRIPTIONS, _load_config

    loaded = _load_config()
    return {"config": loaded, "_descriptions": CONFIG_DESCRIPTIONS}


@router.put("/config")
async def update_config(req: ConfigUpdate):
    """Merge partial config into config.json."""
    from config import CONFIG_PATH, reload_config

    current = {}
    if CONFIG_PATH.exists():
        try:
            current = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning(f"Replacing unreadable config file {CONFIG_PATH}")

    def _merge(base, update):
        for k, v in update.items():
            if isinstance(v, dict) and isinstance(base.get(k), dict):
                _merge(base[k], v)
            else:
                base[k] = v

    # Strip secrets and read-only metadata from input
    _STRIP_KEYS = {"api_key", "anthropic_api_key", "_descriptions"}
    sanitized = {k: v for k, v in req.config.items() if k not in _STRIP_KEYS}
    _merge(current, sanitized)

    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    tmp = CONFIG_PATH.with_suffix(".tmp")
    tmp.write_text(json.dumps(current, indent=2), encoding="utf-8")
    os.replace(tmp, CONFIG_PATH)

    # Running orchestrators keep their adapter; limits and prompts pick up new values
    reload_config()
    return {"status": "saved"}


# ---- Status ----

@router.get("/status")
async def server_status():
    """Server status (conversations, uptime)."""
    from config import get_api_key

    store = orchestrator.store if orchestrator is not None else None
    return ServerStatus(
        active_conversations=len(store) if store is not None else 0,
        max_conversations=store.max_entries if store is not None else config.CONVERSATION_MAX_ENTRIES,
        uptime_seconds=time.time() - _start_time,
        api_key_configured=bool(get_api_key()),
        model=orchestrator.model if orchestrator is not None else config.MODEL,
    ).model_dump()
