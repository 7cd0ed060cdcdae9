"""
gateway/services/calibration.py

Calibration Store and Baseline Store.
Both are plain data holders guarded by per-entry locks: one writer,
many readers, and every write replaces the stored object atomically.
"""

import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Mapping, Optional

import numpy as np
import pydantic
import structlog

from gateway.errors import ProcessingError, ValidationError
from gateway.schemas import BaselineProfile, CalibrationParams, utcnow

logger = structlog.get_logger(__name__)


class CalibrationStore:
    """Per-sensor calibration parameters, defaults until calibrated."""

    def __init__(self, defaults: Optional[CalibrationParams] = None) -> None:
        self._defaults = defaults or CalibrationParams()
        self._params: dict[str, CalibrationParams] = {}
        self._lock = threading.Lock()

    def get(self, sensor_id: str) -> CalibrationParams:
        with self._lock:
            return self._params.get(sensor_id, self._defaults)

    def is_calibrated(self, sensor_id: str) -> bool:
        return sensor_id in self._params

    def apply_calibration(
        self,
        sensor_id: str,
        params: CalibrationParams | Mapping[str, Any],
    ) -> CalibrationParams:
        """
        Validate and store calibration for one sensor.

        Raises ValidationError on any out-of-range field; the previous
        parameters stay in place (no partial application).
        """
        if not isinstance(params, CalibrationParams):
            try:
                params = CalibrationParams(**dict(params))
            except pydantic.ValidationError as exc:
                first = exc.errors()[0]
                field = ".".join(str(p) for p in first.get("loc", ()))
                logger.warning(
                    "calibration_rejected",
                    sensor_id=sensor_id,
                    field=field,
                    error=first.get("msg"),
                )
                raise ValidationError(
                    f"invalid calibration for {sensor_id}: {field}: {first.get('msg')}",
                    field=field,
                ) from exc
        else:
            # Instances built with model_construct() bypass validation
            try:
                params = CalibrationParams.model_validate(params.model_dump())
            except pydantic.ValidationError as exc:
                raise ValidationError(
                    f"invalid calibration for {sensor_id}: {exc.errors()[0].get('msg')}"
                ) from exc

        with self._lock:
            self._params[sensor_id] = params
        logger.info("calibration_applied", sensor_id=sensor_id, **params.model_dump())
        return params


class BaselineStore:
    """Shared BaselineProfile registry with a lock per sensor profile."""

    def __init__(self) -> None:
        self._profiles: dict[str, BaselineProfile] = {}
        self._tissue: dict[str, np.ndarray] = {}
        self._locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._registry_lock = threading.Lock()

    def _lock_for(self, sensor_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks[sensor_id]

    def get(self, sensor_id: str) -> Optional[BaselineProfile]:
        with self._lock_for(sensor_id):
            return self._profiles.get(sensor_id)

    def tissue_baseline(self, sensor_id: str) -> Optional[np.ndarray]:
        with self._lock_for(sensor_id):
            return self._tissue.get(sensor_id)

    def swap(self, profile: BaselineProfile, tissue: Optional[np.ndarray] = None) -> None:
        """Replace the profile (and optional ToF tissue vector) in one step."""
        with self._lock_for(profile.sensor_id):
            self._profiles[profile.sensor_id] = profile
            if tissue is not None:
                self._tissue[profile.sensor_id] = np.array(tissue, dtype=float, copy=True)

    def sensor_ids(self) -> list[str]:
        with self._registry_lock:
            return list(self._profiles)


def compute_baseline(
    sensor_id: str, window: np.ndarray, now: Optional[datetime] = None
) -> BaselineProfile:
    """Per-channel mean and population variance of a window of filtered samples."""
    matrix = np.asarray(window, dtype=float)
    if matrix.size == 0:
        raise ProcessingError(f"no samples to build a baseline for {sensor_id}")
    if matrix.ndim == 1:
        matrix = matrix[:, None]
    return BaselineProfile(
        sensor_id=sensor_id,
        mean_vector=np.mean(matrix, axis=0).tolist(),
        variance_vector=np.var(matrix, axis=0).tolist(),
        last_updated=now or utcnow(),
    )
