"""
gateway/services/persistence.py

Checkpoints pipeline results to the MySQL database (storage collaborator).
Uses SQLAlchemy 2.0 async sessions. A failed write is logged and reported
as False; it never stops the stream.
"""

import json

import structlog

from db.models import AlertLog, AsyncSessionLocal, BaselineSnapshot, SessionMetricsLog
from gateway.schemas import Alert, BaselineProfile, utcnow
from gateway.services.metrics import SessionTracker

logger = structlog.get_logger(__name__)


async def persist_session_metrics(tracker: SessionTracker) -> bool:
    """Insert the end-of-session metrics into session_metrics_log."""
    metrics = tracker.snapshot()
    try:
        async with AsyncSessionLocal() as session:
            record = SessionMetricsLog(
                session_id=tracker.session_id,
                athlete_id=tracker.athlete_id,
                started_at=tracker.started_at,
                ended_at=utcnow(),
                batches=tracker.batches,
                metrics_json=metrics.model_dump_json(),
            )
            session.add(record)
            await session.commit()
            logger.info(
                "session_metrics_persisted",
                session_id=tracker.session_id,
                batches=tracker.batches,
            )
            return True
    except Exception as exc:
        logger.error(
            "session_metrics_persist_failed",
            session_id=tracker.session_id,
            error=str(exc),
        )
        return False


async def persist_alert(alert: Alert) -> bool:
    """Insert a dispatched alert into alert_log."""
    try:
        async with AsyncSessionLocal() as session:
            record = AlertLog(
                alert_id=alert.id,
                sensor_id=alert.sensor_id,
                category=alert.type.value,
                severity=alert.severity.value,
                dispatched_at=alert.timestamp,
                payload=json.dumps(alert.payload, default=str),
                acknowledged=alert.acknowledged,
            )
            session.add(record)
            await session.commit()
            logger.info("alert_persisted", alert_id=alert.id, sensor_id=alert.sensor_id)
            return True
    except Exception as exc:
        logger.error(
            "alert_persist_failed",
            alert_id=alert.id,
            error=str(exc),
        )
        return False


async def persist_baseline(profile: BaselineProfile) -> bool:
    """Insert a refreshed baseline into baseline_snapshot."""
    try:
        async with AsyncSessionLocal() as session:
            record = BaselineSnapshot(
                sensor_id=profile.sensor_id,
                captured_at=profile.last_updated,
                channels=len(profile.mean_vector),
                mean_max=max(profile.mean_vector) if profile.mean_vector else None,
                mean_vector=json.dumps(profile.mean_vector),
                variance_vector=json.dumps(profile.variance_vector),
            )
            session.add(record)
            await session.commit()
            logger.info("baseline_persisted", sensor_id=profile.sensor_id)
            return True
    except Exception as exc:
        logger.error(
            "baseline_persist_failed",
            sensor_id=profile.sensor_id,
            error=str(exc),
        )
        return False
