"""
gateway/services/notification.py

Hands dispatched alerts to the notification collaborator.
Delivery, retries and presentation happen in the Celery worker (worker/main.py);
the gateway only enqueues the alert.
"""

import asyncio

import structlog

from config import settings
from gateway.schemas import Alert

logger = structlog.get_logger(__name__)


async def hand_off_alert(alert: Alert) -> bool:
    """
    Enqueue a dispatched alert for push delivery.

    Returns False if the broker is unreachable; the alert itself has already
    been emitted on the outbound stream, so a failed hand-off is logged only.
    """
    try:
        from worker.main import celery_app

        # Broker publish is synchronous and may retry; keep it off the event loop
        await asyncio.to_thread(
            celery_app.send_task,
            "worker.tasks.deliver_alert",
            args=[alert.model_dump_json()],
        )
        logger.info(
            "alert_handed_off",
            alert_id=alert.id,
            sensor_id=alert.sensor_id,
            severity=alert.severity.value,
            fcm_key_present=bool(settings.fcm_server_key),
        )
        return True
    except Exception as exc:
        logger.error(
            "alert_hand_off_failed",
            alert_id=alert.id,
            sensor_id=alert.sensor_id,
            error=str(exc),
        )
        return False
