"""
gateway/routers/telemetry.py

POST /telemetry endpoint.
Receives reading batches from the edge layer and routes them to the sensor workers.
"""

import structlog
from fastapi import APIRouter, Depends

from gateway.dependencies import get_engine
from gateway.schemas import TelemetryBatch
from gateway.services.stream_processor import StreamProcessor

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/telemetry")
async def receive_telemetry(
    batch: TelemetryBatch,
    engine: StreamProcessor = Depends(get_engine),
) -> dict[str, int | str]:
    """
    Receive a batch of readings.

    Readings below the quality floor, with non-finite values, or whose shape
    differs from the sensor's established channel count are rejected and
    counted; the rest are queued for their sensor's worker.
    """
    accepted = sum(1 for reading in batch.readings if engine.ingest(reading))
    rejected = len(batch.readings) - accepted
    logger.info(
        "telemetry_received",
        readings=len(batch.readings),
        accepted=accepted,
        rejected=rejected,
    )
    return {"status": "received", "accepted": accepted, "rejected": rejected}
