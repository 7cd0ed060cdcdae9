"""
gateway/routers/alerts.py

Alert ledger for the UI collaborator: list recent alerts and acknowledge one.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from gateway.dependencies import get_engine
from gateway.schemas import Alert
from gateway.services.stream_processor import StreamProcessor

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("", response_model=list[Alert])
async def list_alerts(
    limit: int = Query(default=50, ge=1, le=1000),
    engine: StreamProcessor = Depends(get_engine),
) -> list[Alert]:
    return engine.alerts.recent(limit)


@router.post("/{alert_id}/ack", response_model=Alert)
async def acknowledge_alert(
    alert_id: str,
    engine: StreamProcessor = Depends(get_engine),
) -> Alert:
    alert = engine.alerts.acknowledge(alert_id)
    if alert is None:
        logger.warning("alert_ack_unknown", alert_id=alert_id)
        raise HTTPException(status_code=404, detail=f"alert {alert_id} not found")
    return alert
