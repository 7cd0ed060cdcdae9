"""
gateway/services/anomaly.py

Statistical anomaly detection over a filtered window.
- detect: one channel against its baseline profile
- detect_channels: every column of a multi-channel window, most confident wins

Uses constants from gateway/constants.py; no magic numbers allowed.
"""

import time
from datetime import datetime
from typing import Optional

import numpy as np
import structlog

from gateway.constants import (
    DISCONTINUITY_STD_MULTIPLIER,
    OUTLIER_STD_MULTIPLIER,
    SPIKE_STD_MULTIPLIER,
)
from gateway.errors import ProcessingError
from gateway.schemas import AnomalyResult, AnomalyType, BaselineProfile, utcnow

logger = structlog.get_logger(__name__)


def moving_average(window: np.ndarray, width: int) -> np.ndarray:
    """Sliding mean over `width` samples ("valid" positions only)."""
    if width <= 1 or window.size < width:
        return window.astype(float, copy=True)
    kernel = np.full(width, 1.0 / width)
    return np.convolve(window, kernel, mode="valid")


def classify(deviation: float, baseline_std: float) -> AnomalyType:
    """Map a deviation onto an anomaly type by multiples of the baseline stddev."""
    if deviation > SPIKE_STD_MULTIPLIER * baseline_std:
        return AnomalyType.SPIKE_PATTERN
    if deviation > OUTLIER_STD_MULTIPLIER * baseline_std:
        return AnomalyType.OUTLIER
    if deviation < DISCONTINUITY_STD_MULTIPLIER * baseline_std:
        return AnomalyType.DISCONTINUITY
    return AnomalyType.DRIFT


class AnomalyDetector:
    """
    Moving-statistics detector.

    confidence = (max(window) - std) / std, with std the population stddev
    of the window; a flat window (std == 0) yields confidence 0. The type is
    chosen by comparing that deviation against the baseline stddev, which
    falls back to the window's own stddev until a profile exists.
    """

    def __init__(
        self,
        anomaly_threshold: float = 0.85,
        moving_average_width: int = 10,
        latency_budget_ms: float = 100.0,
    ) -> None:
        self.anomaly_threshold = anomaly_threshold
        self.moving_average_width = moving_average_width
        self.latency_budget_ms = latency_budget_ms

    def detect(
        self,
        window,
        baseline: Optional[BaselineProfile],
        sensor_id: Optional[str] = None,
        channel_index: int = 0,
        timestamp: Optional[datetime] = None,
    ) -> AnomalyResult:
        values = np.asarray(window, dtype=float).ravel()
        if values.size == 0:
            raise ProcessingError("empty window")
        if not np.all(np.isfinite(values)):
            raise ProcessingError("window contains non-finite samples")

        start = time.perf_counter()
        smoothed = moving_average(values, self.moving_average_width)
        stddev = float(np.std(values))
        peak = float(np.max(values))
        max_deviation = peak - stddev
        confidence = max_deviation / stddev if stddev > 0 else 0.0

        baseline_std = self._baseline_std(baseline, channel_index, stddev)
        anomaly_type = classify(max_deviation, baseline_std)
        # Distance of the smoothed current level from the reference mean
        level = float(smoothed[-1])
        reference = self._baseline_mean(baseline, channel_index, float(np.mean(values)))

        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > self.latency_budget_ms:
            logger.warning(
                "detection_over_budget",
                sensor_id=sensor_id,
                window_size=int(values.size),
                elapsed_ms=round(elapsed_ms, 2),
            )

        return AnomalyResult(
            sensor_id=sensor_id or (baseline.sensor_id if baseline else "unknown"),
            timestamp=timestamp or utcnow(),
            confidence=confidence,
            type=anomaly_type,
            magnitude=peak,
            baseline_deviation=abs(level - reference),
            channel_index=channel_index,
            actionable=confidence > self.anomaly_threshold,
        )

    def detect_channels(
        self,
        window: np.ndarray,
        baseline: Optional[BaselineProfile],
        sensor_id: str,
        timestamp: Optional[datetime] = None,
    ) -> AnomalyResult:
        """Run detect on each column and keep the most confident result."""
        matrix = np.asarray(window, dtype=float)
        if matrix.ndim == 1:
            return self.detect(matrix, baseline, sensor_id, 0, timestamp)
        if matrix.shape[0] == 0:
            raise ProcessingError("empty window")
        results = [
            self.detect(matrix[:, i], baseline, sensor_id, i, timestamp)
            for i in range(matrix.shape[1])
        ]
        return max(results, key=lambda r: r.confidence)

    @staticmethod
    def _baseline_std(
        baseline: Optional[BaselineProfile], channel_index: int, fallback: float
    ) -> float:
        if baseline is None or channel_index >= len(baseline.variance_vector):
            return fallback
        return float(np.sqrt(max(baseline.variance_vector[channel_index], 0.0)))

    @staticmethod
    def _baseline_mean(
        baseline: Optional[BaselineProfile], channel_index: int, fallback: float
    ) -> float:
        if baseline is None or channel_index >= len(baseline.mean_vector):
            return fallback
        return float(baseline.mean_vector[channel_index])
