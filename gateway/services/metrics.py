"""
gateway/services/metrics.py

Biomechanical metrics over filtered IMU and ToF windows.
- MetricsAggregator.aggregate: one batch -> SessionMetrics
- SessionTracker: owns one session's SessionMetrics for its lifetime
"""

import threading
from datetime import datetime
from typing import Optional

import numpy as np
import structlog

from gateway.constants import IMU_AXES, JOINT_REFERENCE_VECTOR
from gateway.schemas import AnomalyResult, MetricKey, SessionMetrics, utcnow

logger = structlog.get_logger(__name__)


def symmetry_index(values: np.ndarray) -> float:
    """|left - right| / (left + right), splitting the series at its midpoint."""
    flat = np.asarray(values, dtype=float).ravel()
    if flat.size == 0:
        return 0.0
    mid = flat.size // 2
    left, right = float(np.sum(flat[:mid])), float(np.sum(flat[mid:]))
    total = left + right
    if total == 0:
        return 0.0
    return abs(left - right) / abs(total)


def joint_angles(
    triplets: np.ndarray,
    reference: tuple[float, float, float] = JOINT_REFERENCE_VECTOR,
) -> np.ndarray:
    """acos(dot(normalize(v), normalize(ref))) in degrees; zero vectors are skipped."""
    vectors = np.asarray(triplets, dtype=float)[:, :IMU_AXES]
    norms = np.linalg.norm(vectors, axis=1)
    valid = norms > 0
    if not np.any(valid):
        return np.empty(0)
    unit = vectors[valid] / norms[valid, None]
    ref = np.asarray(reference, dtype=float)
    ref = ref / np.linalg.norm(ref)
    return np.degrees(np.arccos(np.clip(unit @ ref, -1.0, 1.0)))


def acceleration_magnitude(window: np.ndarray) -> np.ndarray:
    matrix = np.asarray(window, dtype=float)
    if matrix.ndim == 1:
        return np.abs(matrix)
    return np.linalg.norm(matrix[:, :IMU_AXES], axis=1)


class MetricsAggregator:
    """Combine filtered IMU and ToF windows into one SessionMetrics batch."""

    def aggregate(
        self,
        imu_window: Optional[np.ndarray],
        tof_window: Optional[np.ndarray],
        imu_sensor_id: str = "imu",
        tof_sensor_id: str = "tof",
        tissue_baseline: Optional[np.ndarray] = None,
    ) -> SessionMetrics:
        imu = self._imu_metrics(imu_window, imu_sensor_id)
        tof = self._tof_metrics(tof_window, tof_sensor_id, tissue_baseline)
        return imu.merge(tof, first_write_wins=True)

    def _imu_metrics(self, window: Optional[np.ndarray], sensor_id: str) -> SessionMetrics:
        if window is None or np.asarray(window).size == 0:
            return SessionMetrics()
        matrix = np.asarray(window, dtype=float)
        magnitude = acceleration_magnitude(matrix)
        values = {
            MetricKey.ACCELERATION_MEAN: float(np.mean(magnitude)),
            MetricKey.ACCELERATION_STDDEV: float(np.std(magnitude)),
            MetricKey.MOVEMENT_INTENSITY: float(np.mean(np.abs(matrix))),
            MetricKey.SYMMETRY_INDEX: symmetry_index(magnitude),
        }
        range_of_motion: dict[str, float] = {}
        if matrix.ndim == 2 and matrix.shape[1] >= IMU_AXES:
            angles = joint_angles(matrix)
            if angles.size:
                values[MetricKey.JOINT_ANGLE] = float(np.mean(angles))
                range_of_motion[sensor_id] = float(np.max(angles) - np.min(angles))
        return SessionMetrics(values=values, range_of_motion=range_of_motion)

    def _tof_metrics(
        self,
        window: Optional[np.ndarray],
        sensor_id: str,
        tissue_baseline: Optional[np.ndarray],
    ) -> SessionMetrics:
        if window is None or np.asarray(window).size == 0:
            return SessionMetrics()
        data = np.asarray(window, dtype=float).ravel()
        values = {
            MetricKey.MUSCLE_LOAD: float(np.max(data)),
            MetricKey.ASYMMETRY_SCORE: symmetry_index(data),
            MetricKey.TISSUE_DEFORMATION: self.tissue_deformation(data, tissue_baseline),
        }
        return SessionMetrics(
            values=values,
            muscle_activity={sensor_id: float(np.mean(data))},
        )

    @staticmethod
    def tissue_deformation(data: np.ndarray, baseline: Optional[np.ndarray]) -> float:
        """Summed |value - baseline| over the overlapping prefix, per sample of data."""
        if baseline is None:
            return 0.0
        ref = np.asarray(baseline, dtype=float).ravel()
        if ref.size == 0 or data.size == 0:
            return 0.0
        n = min(ref.size, data.size)
        return float(np.sum(np.abs(data[:n] - ref[:n])) / data.size)


class SessionTracker:
    """
    Per-session metrics owner.

    Created on session start and discarded after the end-of-session
    checkpoint. Each sensor's batch replaces the values that sensor reported
    before; keys it does not carry keep their previous values. Session-wide
    `values` are the mean of each key over the sensors reporting it, so two
    IMUs never overwrite each other.
    """

    def __init__(self, session_id: str, athlete_id: str) -> None:
        self.session_id = session_id
        self.athlete_id = athlete_id
        self.started_at: datetime = utcnow()
        self.batches = 0
        self._metrics = SessionMetrics()
        self._region_loads: dict[str, float] = {}
        self._opening_intensity: dict[str, float] = {}
        self._lock = threading.Lock()

    def update(self, batch: SessionMetrics, sensor_id: str) -> None:
        with self._lock:
            reported = self._metrics.sensor_values.setdefault(sensor_id, {})
            reported.update(batch.values)
            self._metrics.muscle_activity.update(batch.muscle_activity)
            self._metrics.range_of_motion.update(batch.range_of_motion)
            self._metrics.anomaly_scores.update(batch.anomaly_scores)

            for region, load in batch.muscle_activity.items():
                self._region_loads[region] = abs(load)
            total = sum(self._region_loads.values())
            if total > 0:
                self._metrics.force_distribution = {
                    region: load / total for region, load in self._region_loads.items()
                }

            intensity = batch.values.get(MetricKey.MOVEMENT_INTENSITY)
            if intensity is not None:
                self._update_fatigue(sensor_id, intensity)
            self._metrics.values = self._session_values()
            self.batches += 1

    def record_anomaly(self, result: AnomalyResult) -> None:
        with self._lock:
            self._metrics.anomaly_scores[result.sensor_id] = result.confidence

    def sensor_value(self, sensor_id: str, key: MetricKey) -> Optional[float]:
        with self._lock:
            return self._metrics.sensor_values.get(sensor_id, {}).get(key)

    def snapshot(self) -> SessionMetrics:
        with self._lock:
            return self._metrics.model_copy(deep=True)

    def _session_values(self) -> dict[MetricKey, float]:
        collected: dict[MetricKey, list[float]] = {}
        for reported in self._metrics.sensor_values.values():
            for key, value in reported.items():
                collected.setdefault(key, []).append(value)
        return {key: float(np.mean(values)) for key, values in collected.items()}

    def _update_fatigue(self, sensor_id: str, intensity: float) -> None:
        opening = self._opening_intensity.get(sensor_id)
        if opening is None:
            if intensity > 0:
                self._opening_intensity[sensor_id] = intensity
            return
        decline = (opening - intensity) / opening
        self._metrics.sensor_values[sensor_id][MetricKey.FATIGUE_INDEX] = float(
            np.clip(decline, 0.0, 1.0)
        )
