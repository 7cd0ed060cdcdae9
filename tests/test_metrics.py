"""
tests/test_metrics.py

Unit tests for gateway/services/metrics.py and SessionMetrics.merge.
"""

import numpy as np
import pytest

from gateway.errors import ProcessingError
from gateway.schemas import MetricKey, SessionMetrics
from gateway.services.metrics import (
    MetricsAggregator,
    SessionTracker,
    joint_angles,
    symmetry_index,
)


def test_symmetry_index_splits_at_midpoint() -> None:
    assert symmetry_index(np.array([1.0, 1.0, 3.0, 3.0])) == pytest.approx(0.5)


def test_symmetry_index_zero_total() -> None:
    assert symmetry_index(np.array([1.0, -1.0])) == 0.0
    assert symmetry_index(np.array([])) == 0.0


def test_joint_angles_against_gravity_axis() -> None:
    angles = joint_angles(np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 0.0], [0.0, 0.0, 0.0]]))
    assert angles.tolist() == pytest.approx([0.0, 90.0])


def test_imu_window_metrics() -> None:
    window = np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]])
    metrics = MetricsAggregator().aggregate(window, None, imu_sensor_id="imu_knee")

    assert metrics.values[MetricKey.ACCELERATION_MEAN] == pytest.approx(1.0)
    assert metrics.values[MetricKey.ACCELERATION_STDDEV] == pytest.approx(0.0)
    assert metrics.values[MetricKey.JOINT_ANGLE] == pytest.approx(45.0)
    assert metrics.range_of_motion == {"imu_knee": pytest.approx(90.0)}
    assert MetricKey.MUSCLE_LOAD not in metrics.values


def test_tof_window_metrics() -> None:
    window = np.array([[1.0, 2.0], [3.0, 4.0]])
    metrics = MetricsAggregator().aggregate(
        None, window, tof_sensor_id="tof_quad", tissue_baseline=np.array([1.0, 1.0])
    )

    assert metrics.values[MetricKey.MUSCLE_LOAD] == 4.0
    # |1-1| + |2-1| over 4 samples
    assert metrics.values[MetricKey.TISSUE_DEFORMATION] == pytest.approx(0.25)
    assert metrics.muscle_activity == {"tof_quad": pytest.approx(2.5)}


def test_tissue_deformation_without_baseline_is_zero() -> None:
    metrics = MetricsAggregator().aggregate(None, np.array([1.0, 2.0]))
    assert metrics.values[MetricKey.TISSUE_DEFORMATION] == 0.0


def test_empty_windows_give_empty_metrics() -> None:
    metrics = MetricsAggregator().aggregate(None, np.empty(0))
    assert metrics == SessionMetrics()


def test_merge_rejects_conflicting_keys() -> None:
    a = SessionMetrics(values={MetricKey.MUSCLE_LOAD: 1.0})
    b = SessionMetrics(values={MetricKey.MUSCLE_LOAD: 2.0})
    with pytest.raises(ProcessingError):
        a.merge(b)


def test_merge_first_write_wins() -> None:
    a = SessionMetrics(values={MetricKey.MUSCLE_LOAD: 1.0})
    b = SessionMetrics(
        values={MetricKey.MUSCLE_LOAD: 2.0, MetricKey.JOINT_ANGLE: 30.0},
        range_of_motion={"knee": 40.0},
    )
    merged = a.merge(b, first_write_wins=True)

    assert merged.values[MetricKey.MUSCLE_LOAD] == 1.0
    assert merged.values[MetricKey.JOINT_ANGLE] == 30.0
    assert merged.range_of_motion == {"knee": 40.0}
    # inputs untouched
    assert MetricKey.JOINT_ANGLE not in a.values


def test_session_tracker_replaces_values_per_batch() -> None:
    tracker = SessionTracker("session_1", "athlete_1")
    tracker.update(
        SessionMetrics(values={MetricKey.MUSCLE_LOAD: 1.0, MetricKey.JOINT_ANGLE: 10.0}), "imu_1"
    )
    tracker.update(SessionMetrics(values={MetricKey.MUSCLE_LOAD: 3.0}), "imu_1")

    snapshot = tracker.snapshot()
    assert snapshot.values[MetricKey.MUSCLE_LOAD] == 3.0
    assert snapshot.values[MetricKey.JOINT_ANGLE] == 10.0
    assert tracker.batches == 2


def test_session_tracker_keeps_each_sensor_values() -> None:
    """Two IMUs report the same keys; neither overwrites the other."""
    aggregator = MetricsAggregator()
    tracker = SessionTracker("session_1", "athlete_1")
    for sensor_id, level in (("imu_left", 1.0), ("imu_right", 9.0)):
        batch = aggregator.aggregate(np.full((20, 3), level), None, imu_sensor_id=sensor_id)
        tracker.update(batch, sensor_id)

    snapshot = tracker.snapshot()
    left = snapshot.sensor_values["imu_left"][MetricKey.ACCELERATION_MEAN]
    right = snapshot.sensor_values["imu_right"][MetricKey.ACCELERATION_MEAN]
    assert left == pytest.approx(np.sqrt(3))
    assert right == pytest.approx(9 * np.sqrt(3))
    assert snapshot.values[MetricKey.ACCELERATION_MEAN] == pytest.approx(5 * np.sqrt(3))
    assert tracker.sensor_value("imu_left", MetricKey.ACCELERATION_MEAN) == pytest.approx(left)


def test_session_tracker_fatigue_is_per_sensor() -> None:
    tracker = SessionTracker("session_1", "athlete_1")
    tracker.update(SessionMetrics(values={MetricKey.MOVEMENT_INTENSITY: 2.0}), "imu_left")
    tracker.update(SessionMetrics(values={MetricKey.MOVEMENT_INTENSITY: 8.0}), "imu_right")
    tracker.update(SessionMetrics(values={MetricKey.MOVEMENT_INTENSITY: 1.0}), "imu_left")

    assert tracker.sensor_value("imu_left", MetricKey.FATIGUE_INDEX) == pytest.approx(0.5)
    assert tracker.sensor_value("imu_right", MetricKey.FATIGUE_INDEX) is None


def test_session_tracker_force_distribution() -> None:
    tracker = SessionTracker("session_1", "athlete_1")
    tracker.update(SessionMetrics(muscle_activity={"left_quad": 3.0}), "tof_1")
    tracker.update(SessionMetrics(muscle_activity={"right_quad": 1.0}), "tof_1")

    assert tracker.snapshot().force_distribution == {
        "left_quad": pytest.approx(0.75),
        "right_quad": pytest.approx(0.25),
    }


def test_session_tracker_fatigue_index() -> None:
    """Fatigue is the decline of movement intensity from the session's opening level."""
    tracker = SessionTracker("session_1", "athlete_1")
    tracker.update(SessionMetrics(values={MetricKey.MOVEMENT_INTENSITY: 2.0}), "imu_1")
    assert MetricKey.FATIGUE_INDEX not in tracker.snapshot().values

    tracker.update(SessionMetrics(values={MetricKey.MOVEMENT_INTENSITY: 1.0}), "imu_1")
    assert tracker.snapshot().values[MetricKey.FATIGUE_INDEX] == pytest.approx(0.5)

    tracker.update(SessionMetrics(values={MetricKey.MOVEMENT_INTENSITY: 3.0}), "imu_1")
    assert tracker.snapshot().values[MetricKey.FATIGUE_INDEX] == 0.0


def test_snapshot_is_detached() -> None:
    tracker = SessionTracker("session_1", "athlete_1")
    tracker.update(SessionMetrics(values={MetricKey.MUSCLE_LOAD: 1.0}), "imu_1")
    snap = tracker.snapshot()
    snap.values[MetricKey.MUSCLE_LOAD] = 99.0
    assert tracker.snapshot().values[MetricKey.MUSCLE_LOAD] == 1.0
