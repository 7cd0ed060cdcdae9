"""
gateway/routers/calibration.py

PUT/GET /sensors/{sensor_id}/calibration.
Out-of-range calibration is rejected with 422 and the previous values stay active.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from gateway.dependencies import get_engine
from gateway.errors import ValidationError
from gateway.schemas import CalibrationParams
from gateway.services.stream_processor import StreamProcessor

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sensors", tags=["calibration"])


class CalibrationResponse(BaseModel):
    sensor_id: str
    calibrated: bool
    params: CalibrationParams


@router.put("/{sensor_id}/calibration", response_model=CalibrationResponse)
async def put_calibration(
    sensor_id: str,
    body: dict,
    engine: StreamProcessor = Depends(get_engine),
) -> CalibrationResponse:
    # Validation happens in the store so rejections share one error path
    try:
        params = engine.apply_calibration(sensor_id, body)
    except ValidationError as exc:
        logger.warning("calibration_request_rejected", sensor_id=sensor_id, field=exc.field)
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "field": exc.field},
        ) from exc
    return CalibrationResponse(sensor_id=sensor_id, calibrated=True, params=params)


@router.get("/{sensor_id}/calibration", response_model=CalibrationResponse)
async def get_calibration(
    sensor_id: str,
    engine: StreamProcessor = Depends(get_engine),
) -> CalibrationResponse:
    return CalibrationResponse(
        sensor_id=sensor_id,
        calibrated=engine.calibration.is_calibrated(sensor_id),
        params=engine.calibration.get(sensor_id),
    )
