"""
tests/test_alerts.py

Unit tests for gateway/services/alerts.py.
Cooldowns run on an injected clock; no test sleeps.
"""

import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from gateway.schemas import (
    AlertCategory,
    AlertSeverity,
    AnomalyResult,
    AnomalyType,
    MetricKey,
)
from gateway.services.alerts import AlertPipeline, PairState, cooldown_for, severity_for
from gateway.services.metrics import symmetry_index
from tests.fixtures import BASE_TIME, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pipeline(clock: FakeClock) -> AlertPipeline:
    return AlertPipeline(anomaly_threshold=0.85, clock=clock)


def test_below_threshold_is_ignored(pipeline: AlertPipeline) -> None:
    assert pipeline.submit("imu_1", AlertCategory.BIOMECHANICAL, 0.5) is None
    assert pipeline.state("imu_1", AlertCategory.BIOMECHANICAL) is PairState.IDLE


def test_dispatch_then_cooldown_suppresses(pipeline: AlertPipeline, clock: FakeClock) -> None:
    """A second trigger within the 1 s general cooldown is counted and dropped."""
    first = pipeline.submit("imu_1", AlertCategory.BIOMECHANICAL, 0.9)
    assert first is not None
    assert first.severity is AlertSeverity.HIGH
    assert pipeline.state("imu_1", AlertCategory.BIOMECHANICAL) is PairState.COOLING_DOWN

    clock.advance(0.5)
    assert pipeline.submit("imu_1", AlertCategory.BIOMECHANICAL, 0.9) is None
    assert pipeline.suppressed("imu_1", AlertCategory.BIOMECHANICAL) == 1

    clock.advance(0.5)
    assert pipeline.state("imu_1", AlertCategory.BIOMECHANICAL) is PairState.IDLE
    assert pipeline.submit("imu_1", AlertCategory.BIOMECHANICAL, 0.9) is not None
    assert pipeline.dispatched_total == 2
    assert pipeline.suppressed_total == 1


def test_medical_cooldown_is_five_minutes(pipeline: AlertPipeline, clock: FakeClock) -> None:
    assert pipeline.submit("tof_1", AlertCategory.MEDICAL, 0.9) is not None
    clock.advance(299.0)
    assert pipeline.submit("tof_1", AlertCategory.MEDICAL, 0.9) is None
    clock.advance(1.0)
    assert pipeline.submit("tof_1", AlertCategory.MEDICAL, 0.9) is not None


def test_categories_cool_down_independently(pipeline: AlertPipeline) -> None:
    """Suppression on one category never blocks another on the same sensor."""
    assert pipeline.submit("imu_1", AlertCategory.BIOMECHANICAL, 0.9) is not None
    assert pipeline.submit("imu_1", AlertCategory.MEDICAL, 0.9) is not None
    assert pipeline.submit("imu_1", AlertCategory.BIOMECHANICAL, 0.9) is None
    assert pipeline.submit("imu_2", AlertCategory.BIOMECHANICAL, 0.9) is not None


def test_sensor_error_cooldown(pipeline: AlertPipeline, clock: FakeClock) -> None:
    alert = pipeline.raise_sensor_error("imu_1", "stream rejected")
    assert alert is not None
    assert alert.type is AlertCategory.SENSOR_ERROR
    assert alert.payload["reason"] == "stream rejected"
    clock.advance(4.9)
    assert pipeline.raise_sensor_error("imu_1", "stream rejected") is None
    clock.advance(0.1)
    assert pipeline.raise_sensor_error("imu_1", "stream rejected") is not None


def test_critical_severity_gets_long_cooldown(pipeline: AlertPipeline, clock: FakeClock) -> None:
    alert = pipeline.submit("imu_1", AlertCategory.PERFORMANCE, 0.97)
    assert alert.severity is AlertSeverity.CRITICAL
    clock.advance(10.0)
    assert pipeline.submit("imu_1", AlertCategory.PERFORMANCE, 0.9) is None


def test_anomaly_type_maps_to_category(pipeline: AlertPipeline) -> None:
    result = AnomalyResult(
        sensor_id="imu_1",
        timestamp=BASE_TIME,
        confidence=2.7,
        type=AnomalyType.SPIKE_PATTERN,
        magnitude=100.0,
        baseline_deviation=90.0,
        actionable=True,
    )
    alert = pipeline.submit_anomaly(result)
    assert alert.type is AlertCategory.MEDICAL
    assert alert.payload["anomaly_type"] == "spike_pattern"


def test_metric_alert_scales_confidence(pipeline: AlertPipeline) -> None:
    assert pipeline.submit_metric("tof_1", MetricKey.ASYMMETRY_SCORE, 0.15) is None
    alert = pipeline.submit_metric("tof_1", MetricKey.ASYMMETRY_SCORE, 0.30)
    assert alert.type is AlertCategory.BIOMECHANICAL
    assert alert.payload["confidence"] == 1.0
    assert alert.payload["metric"] == "asymmetry_score"


def test_untracked_metric_never_alerts(pipeline: AlertPipeline) -> None:
    assert pipeline.submit_metric("imu_1", MetricKey.JOINT_ANGLE, 170.0) is None


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
def test_non_finite_metric_never_alerts(pipeline: AlertPipeline, value: float) -> None:
    assert pipeline.submit_metric("imu_1", MetricKey.SYMMETRY_INDEX, value) is None
    assert pipeline.dispatched_total == 0


def test_overflowing_readings_raise_no_symmetry_alert(pipeline: AlertPipeline) -> None:
    """Sums past float range turn the index into NaN; that must not dispatch."""
    index = symmetry_index(np.full(4, 1e308))
    assert math.isnan(index)

    assert pipeline.submit_metric("imu_1", MetricKey.SYMMETRY_INDEX, index) is None
    assert pipeline.submit("imu_1", AlertCategory.BIOMECHANICAL, math.nan) is None
    assert pipeline.recent() == []


def test_counters_are_exact_under_concurrent_submits(pipeline: AlertPipeline) -> None:
    """Passes for different sensors run on worker threads at the same time."""
    sensors = [f"imu_{i}" for i in range(200)]

    def burst(sensor_id: str) -> None:
        for _ in range(5):
            pipeline.submit(sensor_id, AlertCategory.BIOMECHANICAL, 0.9)

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(burst, sensors))

    assert pipeline.dispatched_total == 200
    assert pipeline.suppressed_total == 800


def test_acknowledge_stores_copy(pipeline: AlertPipeline) -> None:
    alert = pipeline.submit("imu_1", AlertCategory.BIOMECHANICAL, 0.9)
    acked = pipeline.acknowledge(alert.id)

    assert acked.acknowledged is True
    assert alert.acknowledged is False
    assert pipeline.get(alert.id).acknowledged is True
    assert pipeline.acknowledge("missing") is None


def test_recent_returns_newest_last(pipeline: AlertPipeline) -> None:
    pipeline.submit("imu_1", AlertCategory.BIOMECHANICAL, 0.9)
    last = pipeline.submit("imu_2", AlertCategory.BIOMECHANICAL, 0.9)
    assert pipeline.recent(1) == [last]


@pytest.mark.parametrize(
    "confidence,category,expected",
    [
        (0.99, AlertCategory.MEDICAL, AlertSeverity.CRITICAL),
        (0.90, AlertCategory.MEDICAL, AlertSeverity.HIGH),
        (0.55, AlertCategory.MEDICAL, AlertSeverity.MEDIUM),
        (0.55, AlertCategory.PERFORMANCE, AlertSeverity.LOW),
    ],
)
def test_severity_for(confidence: float, category: AlertCategory, expected: AlertSeverity) -> None:
    assert severity_for(confidence, category) is expected


def test_cooldown_for_categories() -> None:
    assert cooldown_for(AlertCategory.CONNECTIVITY, AlertSeverity.CRITICAL) == 5.0
    assert cooldown_for(AlertCategory.MEDICAL, AlertSeverity.LOW) == 300.0
    assert cooldown_for(AlertCategory.BIOMECHANICAL, AlertSeverity.HIGH) == 1.0
