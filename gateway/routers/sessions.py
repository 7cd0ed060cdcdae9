"""
gateway/routers/sessions.py

Session lifecycle and gateway status.
- POST /sessions: open the single active session
- GET /sessions/current/metrics: live SessionMetrics
- DELETE /sessions/current: checkpoint to storage and close
- GET /status, POST /status/transport/restart: connectivity and counters
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException

from gateway.dependencies import get_engine
from gateway.errors import ValidationError
from gateway.schemas import SessionMetrics, SessionStart
from gateway.services.stream_processor import StreamProcessor

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["sessions"])


@router.post("/sessions", status_code=201)
async def start_session(
    body: SessionStart,
    engine: StreamProcessor = Depends(get_engine),
) -> dict[str, str]:
    try:
        tracker = engine.start_session(body.session_id, body.athlete_id)
    except ValidationError as exc:
        logger.warning("session_start_conflict", session_id=body.session_id, error=str(exc))
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {
        "session_id": tracker.session_id,
        "athlete_id": tracker.athlete_id,
        "started_at": tracker.started_at.isoformat(),
    }


@router.get("/sessions/current/metrics", response_model=SessionMetrics)
async def current_metrics(engine: StreamProcessor = Depends(get_engine)) -> SessionMetrics:
    if engine.session is None:
        raise HTTPException(status_code=404, detail="no active session")
    return engine.session.snapshot()


@router.delete("/sessions/current", response_model=SessionMetrics)
async def end_session(engine: StreamProcessor = Depends(get_engine)) -> SessionMetrics:
    metrics = await engine.end_session()
    if metrics is None:
        raise HTTPException(status_code=404, detail="no active session")
    return metrics


@router.get("/status")
async def status(engine: StreamProcessor = Depends(get_engine)) -> dict[str, Any]:
    return engine.status()


@router.post("/status/transport/restart", status_code=202)
async def restart_transport(engine: StreamProcessor = Depends(get_engine)) -> dict[str, str]:
    if engine.transport is None:
        raise HTTPException(status_code=409, detail="no transport configured")
    if not engine.transport.terminal:
        raise HTTPException(status_code=409, detail="transport is not in a terminal state")
    engine.restart_transport()
    return {"status": "restarting"}
