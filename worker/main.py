"""
worker/main.py

Celery Worker entry point for the notification collaborator.
Receives dispatched alerts from the gateway and forwards them to push delivery.
"""

import json

import structlog
from celery import Celery

from config import settings

logger = structlog.get_logger(__name__)

celery_app = Celery(
    "worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)


def send_push(sensor_id: str, title: str, body: str) -> None:
    """
    Send a push notification for an alert.

    In production, this would integrate with FCM or APNs.
    """
    logger.info(
        "push_notification_sent",
        sensor_id=sensor_id,
        title=title,
        body_length=len(body),
        fcm_key_present=bool(settings.fcm_server_key),
    )
    # TODO: Integrate with FCM/APNs using settings.fcm_server_key


@celery_app.task(name="worker.tasks.deliver_alert")
def deliver_alert(alert_json: str) -> None:
    """Celery task that turns an Alert record into a push notification."""
    alert = json.loads(alert_json)
    title = f"{alert['severity'].upper()} {alert['type'].replace('_', ' ')} alert"
    body = json.dumps(alert.get("payload", {}), ensure_ascii=False)
    send_push(alert["sensor_id"], title, body)
    logger.info("alert_delivered", alert_id=alert["id"], sensor_id=alert["sensor_id"])
