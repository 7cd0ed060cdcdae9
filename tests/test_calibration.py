"""
tests/test_calibration.py

Unit tests for gateway/services/calibration.py.
"""

import numpy as np
import pytest

from gateway.errors import ProcessingError, ValidationError
from gateway.schemas import CalibrationParams
from gateway.services.calibration import BaselineStore, CalibrationStore, compute_baseline
from tests.fixtures import build_baseline


def test_defaults_until_calibrated() -> None:
    store = CalibrationStore()
    assert store.get("tof_1") == CalibrationParams()
    assert store.is_calibrated("tof_1") is False


def test_valid_calibration_is_stored() -> None:
    store = CalibrationStore()
    applied = store.apply_calibration("tof_1", {"tof_gain": 12.0, "sample_window_ms": 200})

    assert applied.tof_gain == 12.0
    assert store.get("tof_1").sample_window_ms == 200
    assert store.is_calibrated("tof_1") is True


def test_out_of_range_rejected_without_partial_update() -> None:
    """An invalid field rejects the whole set; prior values stay in place."""
    store = CalibrationStore()
    store.apply_calibration("tof_1", {"tof_gain": 4.0})

    with pytest.raises(ValidationError) as excinfo:
        store.apply_calibration("tof_1", {"tof_gain": 20.0, "filter_cutoff_hz": 3.0})

    assert excinfo.value.field == "tof_gain"
    assert store.get("tof_1").tof_gain == 4.0
    assert store.get("tof_1").filter_cutoff_hz == 2.0


@pytest.mark.parametrize(
    "field,value",
    [
        ("imu_drift_correction", 2.5),
        ("pressure_threshold", 0.0),
        ("sample_window_ms", 20),
        ("filter_cutoff_hz", 11.0),
        ("measurement_noise", 0.0),
    ],
)
def test_each_range_is_enforced(field: str, value: float) -> None:
    with pytest.raises(ValidationError):
        CalibrationStore().apply_calibration("imu_1", {field: value})


def test_unvalidated_instance_is_rechecked() -> None:
    bogus = CalibrationParams.model_construct(tof_gain=99.0)
    with pytest.raises(ValidationError):
        CalibrationStore().apply_calibration("tof_1", bogus)


def test_compute_baseline_per_channel() -> None:
    profile = compute_baseline("imu_1", np.array([[1.0, 2.0], [3.0, 4.0]]))
    assert profile.mean_vector == [2.0, 3.0]
    assert profile.variance_vector == [1.0, 1.0]


def test_compute_baseline_empty_window() -> None:
    with pytest.raises(ProcessingError):
        compute_baseline("imu_1", np.empty(0))


def test_baseline_swap_replaces_profile() -> None:
    store = BaselineStore()
    assert store.get("imu_1") is None

    store.swap(build_baseline(mean_vector=[1.0]))
    store.swap(build_baseline(mean_vector=[2.0]), tissue=np.array([0.5, 0.5]))

    assert store.get("imu_left_thigh").mean_vector == [2.0]
    assert store.tissue_baseline("imu_left_thigh").tolist() == [0.5, 0.5]
    assert store.sensor_ids() == ["imu_left_thigh"]
