"""
gateway/services/alerts.py

Rate-limited, deduplicated alert dispatch.
Each (sensor_id, category) pair runs its own state machine:
IDLE -> ELIGIBLE -> DISPATCHED -> COOLING_DOWN -> IDLE.
Triggers arriving while a pair cools down are counted and dropped,
so distinct categories on one sensor alert independently.

Uses constants from gateway/constants.py; no magic numbers allowed.
"""

import enum
import math
import threading
import time
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog

from gateway.constants import (
    ALERT_LEDGER_MAX_LEN,
    ASYMMETRY_ALERT_THRESHOLD,
    COOLDOWN_GENERAL_S,
    COOLDOWN_MEDICAL_S,
    COOLDOWN_SENSOR_FAULT_S,
    FATIGUE_ALERT_THRESHOLD,
    MEDIUM_CONFIDENCE_BY_CATEGORY,
    SEVERITY_CRITICAL_CONFIDENCE,
    SEVERITY_HIGH_CONFIDENCE,
    SYMMETRY_ALERT_THRESHOLD,
    TISSUE_DEFORMATION_ALERT_THRESHOLD,
)
from gateway.schemas import (
    Alert,
    AlertCategory,
    AlertSeverity,
    AnomalyResult,
    AnomalyType,
    MetricKey,
)

logger = structlog.get_logger(__name__)


class PairState(str, enum.Enum):
    IDLE = "idle"
    ELIGIBLE = "eligible"
    DISPATCHED = "dispatched"
    COOLING_DOWN = "cooling_down"


ANOMALY_CATEGORY: dict[AnomalyType, AlertCategory] = {
    AnomalyType.SPIKE_PATTERN: AlertCategory.MEDICAL,
    AnomalyType.OUTLIER: AlertCategory.BIOMECHANICAL,
    AnomalyType.DRIFT: AlertCategory.PERFORMANCE,
    AnomalyType.DISCONTINUITY: AlertCategory.SENSOR_ERROR,
}

METRIC_THRESHOLDS: dict[MetricKey, tuple[float, AlertCategory]] = {
    MetricKey.ASYMMETRY_SCORE: (ASYMMETRY_ALERT_THRESHOLD, AlertCategory.BIOMECHANICAL),
    MetricKey.SYMMETRY_INDEX: (SYMMETRY_ALERT_THRESHOLD, AlertCategory.BIOMECHANICAL),
    MetricKey.TISSUE_DEFORMATION: (TISSUE_DEFORMATION_ALERT_THRESHOLD, AlertCategory.MEDICAL),
    MetricKey.FATIGUE_INDEX: (FATIGUE_ALERT_THRESHOLD, AlertCategory.PERFORMANCE),
}


def severity_for(confidence: float, category: AlertCategory) -> AlertSeverity:
    if confidence >= SEVERITY_CRITICAL_CONFIDENCE:
        return AlertSeverity.CRITICAL
    if confidence >= SEVERITY_HIGH_CONFIDENCE:
        return AlertSeverity.HIGH
    if confidence >= MEDIUM_CONFIDENCE_BY_CATEGORY[category.value]:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


def cooldown_for(category: AlertCategory, severity: AlertSeverity) -> float:
    if category in (AlertCategory.SENSOR_ERROR, AlertCategory.CONNECTIVITY):
        return COOLDOWN_SENSOR_FAULT_S
    if category is AlertCategory.MEDICAL or severity is AlertSeverity.CRITICAL:
        return COOLDOWN_MEDICAL_S
    return COOLDOWN_GENERAL_S


@dataclass
class _Pair:
    state: PairState = PairState.IDLE
    cooldown_until: float = 0.0
    suppressed: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)


class AlertPipeline:
    """Turns actionable anomalies and metric threshold crossings into alerts."""

    def __init__(
        self,
        anomaly_threshold: float = 0.85,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.anomaly_threshold = anomaly_threshold
        self._clock = clock
        self._pairs: defaultdict[tuple[str, AlertCategory], _Pair] = defaultdict(_Pair)
        self._table_lock = threading.Lock()
        self._ledger: OrderedDict[str, Alert] = OrderedDict()
        self._ledger_lock = threading.Lock()
        self.suppressed_total = 0
        self.dispatched_total = 0

    def submit(
        self,
        sensor_id: str,
        category: AlertCategory,
        confidence: float,
        payload: Optional[dict] = None,
    ) -> Optional[Alert]:
        """
        Offer a trigger to the (sensor_id, category) pair.

        Returns the dispatched Alert, or None when the trigger is below the
        threshold or the pair is cooling down.
        """
        pair = self._pair(sensor_id, category)
        with pair.lock:
            now = self._clock()
            self._expire(pair, now)
            if not math.isfinite(confidence) or confidence < self.anomaly_threshold:
                return None
            if pair.state is PairState.COOLING_DOWN:
                pair.suppressed += 1
                with self._table_lock:
                    self.suppressed_total += 1
                logger.debug(
                    "alert_suppressed",
                    sensor_id=sensor_id,
                    category=category.value,
                    remaining_s=round(pair.cooldown_until - now, 3),
                )
                return None

            pair.state = PairState.ELIGIBLE
            severity = severity_for(confidence, category)
            alert = Alert(
                type=category,
                severity=severity,
                sensor_id=sensor_id,
                payload={"confidence": confidence, **(payload or {})},
            )
            pair.state = PairState.DISPATCHED
            pair.cooldown_until = now + cooldown_for(category, severity)
            pair.state = PairState.COOLING_DOWN

        with self._table_lock:
            self.dispatched_total += 1
        self._remember(alert)
        logger.info(
            "alert_dispatched",
            alert_id=alert.id,
            sensor_id=sensor_id,
            category=category.value,
            severity=severity.value,
            confidence=round(confidence, 4),
        )
        return alert

    def submit_anomaly(self, result: AnomalyResult) -> Optional[Alert]:
        return self.submit(
            result.sensor_id,
            ANOMALY_CATEGORY[result.type],
            result.confidence,
            {
                "anomaly_type": result.type.value,
                "magnitude": result.magnitude,
                "baseline_deviation": result.baseline_deviation,
                "channel_index": result.channel_index,
                "detected_at": result.timestamp.isoformat(),
            },
        )

    def submit_metric(self, sensor_id: str, key: MetricKey, value: float) -> Optional[Alert]:
        """Alert on a metric above its threshold; confidence scales with the excess."""
        if key not in METRIC_THRESHOLDS:
            return None
        threshold, category = METRIC_THRESHOLDS[key]
        if not math.isfinite(value):
            logger.warning("metric_not_finite", sensor_id=sensor_id, metric=key.value)
            return None
        if value <= threshold:
            return None
        confidence = min(max(value / threshold * self.anomaly_threshold, 0.0), 1.0)
        return self.submit(
            sensor_id,
            category,
            confidence,
            {"metric": key.value, "value": value, "threshold": threshold},
        )

    def raise_sensor_error(
        self,
        sensor_id: str,
        reason: str,
        category: AlertCategory = AlertCategory.SENSOR_ERROR,
    ) -> Optional[Alert]:
        return self.submit(sensor_id, category, self.anomaly_threshold, {"reason": reason})

    def state(self, sensor_id: str, category: AlertCategory) -> PairState:
        pair = self._pair(sensor_id, category)
        with pair.lock:
            self._expire(pair, self._clock())
            return pair.state

    def suppressed(self, sensor_id: str, category: AlertCategory) -> int:
        return self._pair(sensor_id, category).suppressed

    def get(self, alert_id: str) -> Optional[Alert]:
        with self._ledger_lock:
            return self._ledger.get(alert_id)

    def recent(self, limit: int = 50) -> list[Alert]:
        with self._ledger_lock:
            return list(self._ledger.values())[-limit:]

    def acknowledge(self, alert_id: str) -> Optional[Alert]:
        """Store an acknowledged copy; called on behalf of the UI collaborator."""
        with self._ledger_lock:
            alert = self._ledger.get(alert_id)
            if alert is None:
                return None
            acked = alert.model_copy(update={"acknowledged": True})
            self._ledger[alert_id] = acked
        logger.info("alert_acknowledged", alert_id=alert_id, sensor_id=acked.sensor_id)
        return acked

    def _pair(self, sensor_id: str, category: AlertCategory) -> _Pair:
        with self._table_lock:
            return self._pairs[(sensor_id, category)]

    @staticmethod
    def _expire(pair: _Pair, now: float) -> None:
        if pair.state is PairState.COOLING_DOWN and now >= pair.cooldown_until:
            pair.state = PairState.IDLE

    def _remember(self, alert: Alert) -> None:
        with self._ledger_lock:
            self._ledger[alert.id] = alert
            while len(self._ledger) > ALERT_LEDGER_MAX_LEN:
                self._ledger.popitem(last=False)
