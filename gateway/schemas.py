"""
gateway/schemas.py

Pydantic data models for the stream pipeline.
- SensorReading: raw sample delivered by the garment edge layer
- CalibrationParams: validated per-sensor calibration
- BaselineProfile / AnomalyResult / HeatMapCell / SessionMetrics / Alert:
  results produced by the pipeline and handed to collaborators
"""

import enum
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from gateway.constants import (
    FILTER_CUTOFF_DEFAULT_HZ,
    FILTER_CUTOFF_MAX_HZ,
    FILTER_CUTOFF_MIN_HZ,
    IMU_DRIFT_DEFAULT_DEG,
    IMU_DRIFT_MAX_DEG,
    IMU_DRIFT_MIN_DEG,
    MEASUREMENT_NOISE_DEFAULT,
    PRESSURE_THRESHOLD_DEFAULT_KG,
    PRESSURE_THRESHOLD_MAX_KG,
    PRESSURE_THRESHOLD_MIN_KG,
    PROCESS_NOISE_DEFAULT,
    QUALITY_SCORE_MAX,
    QUALITY_SCORE_MIN,
    SAMPLE_WINDOW_DEFAULT_MS,
    SAMPLE_WINDOW_MAX_MS,
    SAMPLE_WINDOW_MIN_MS,
    TOF_GAIN_DEFAULT,
    TOF_GAIN_MAX,
    TOF_GAIN_MIN,
)
from gateway.errors import ProcessingError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SensorChannel(str, enum.Enum):
    IMU = "imu"
    TOF = "tof"


class SensorReading(BaseModel):
    """A single timestamped, quality-scored sample from one garment sensor."""

    model_config = ConfigDict(frozen=True)

    sensor_id: str
    channel: SensorChannel
    timestamp: datetime
    raw_values: list[float]
    quality_score: float = Field(ge=QUALITY_SCORE_MIN, le=QUALITY_SCORE_MAX)


class CalibrationParams(BaseModel):
    """
    Per-sensor calibration.

    Every field is range-checked on construction; out-of-range values are
    rejected, never clamped.
    """

    model_config = ConfigDict(frozen=True)

    tof_gain: float = Field(
        default=TOF_GAIN_DEFAULT, ge=TOF_GAIN_MIN, le=TOF_GAIN_MAX
    )
    imu_drift_correction: float = Field(
        default=IMU_DRIFT_DEFAULT_DEG, ge=IMU_DRIFT_MIN_DEG, le=IMU_DRIFT_MAX_DEG
    )
    pressure_threshold: float = Field(
        default=PRESSURE_THRESHOLD_DEFAULT_KG,
        ge=PRESSURE_THRESHOLD_MIN_KG,
        le=PRESSURE_THRESHOLD_MAX_KG,
    )
    sample_window_ms: int = Field(
        default=SAMPLE_WINDOW_DEFAULT_MS,
        ge=SAMPLE_WINDOW_MIN_MS,
        le=SAMPLE_WINDOW_MAX_MS,
    )
    filter_cutoff_hz: float = Field(
        default=FILTER_CUTOFF_DEFAULT_HZ,
        ge=FILTER_CUTOFF_MIN_HZ,
        le=FILTER_CUTOFF_MAX_HZ,
    )
    measurement_noise: float = Field(default=MEASUREMENT_NOISE_DEFAULT, gt=0)
    process_noise: float = Field(default=PROCESS_NOISE_DEFAULT, gt=0)


class FilterState(BaseModel):
    """Snapshot of one channel's Kalman estimate."""

    estimate: float
    estimate_error: float


class BaselineProfile(BaseModel):
    """Per-sensor reference statistics; replaced wholesale on refresh."""

    model_config = ConfigDict(frozen=True)

    sensor_id: str
    mean_vector: list[float]
    variance_vector: list[float]
    last_updated: datetime = Field(default_factory=utcnow)


class AnomalyType(str, enum.Enum):
    OUTLIER = "outlier"
    DRIFT = "drift"
    SPIKE_PATTERN = "spike_pattern"
    DISCONTINUITY = "discontinuity"


class AnomalyResult(BaseModel):
    """Outcome of one detection pass over a window."""

    model_config = ConfigDict(frozen=True)

    sensor_id: str
    timestamp: datetime
    confidence: float
    type: AnomalyType
    magnitude: float
    baseline_deviation: float
    channel_index: int = 0
    actionable: bool = False


class HeatMapCell(BaseModel):
    grid_x: int
    grid_y: int
    intensity: float = Field(ge=0.0, le=1.0)


class MetricKey(str, enum.Enum):
    """Closed set of scalar session metrics."""

    ACCELERATION_MEAN = "acceleration_mean"
    ACCELERATION_STDDEV = "acceleration_stddev"
    MOVEMENT_INTENSITY = "movement_intensity"
    SYMMETRY_INDEX = "symmetry_index"
    JOINT_ANGLE = "joint_angle"
    MUSCLE_LOAD = "muscle_load"
    ASYMMETRY_SCORE = "asymmetry_score"
    TISSUE_DEFORMATION = "tissue_deformation"
    FATIGUE_INDEX = "fatigue_index"


class SessionMetrics(BaseModel):
    """
    Biomechanical metrics for one session.

    `values` is keyed by MetricKey; the four maps are keyed by muscle,
    body region, joint and sensor identifiers respectively. `sensor_values`
    holds the latest MetricKey values reported by each sensor.
    """

    values: dict[MetricKey, float] = Field(default_factory=dict)
    muscle_activity: dict[str, float] = Field(default_factory=dict)
    force_distribution: dict[str, float] = Field(default_factory=dict)
    range_of_motion: dict[str, float] = Field(default_factory=dict)
    anomaly_scores: dict[str, float] = Field(default_factory=dict)
    sensor_values: dict[str, dict[MetricKey, float]] = Field(default_factory=dict)

    def merge(
        self, other: "SessionMetrics", first_write_wins: bool = False
    ) -> "SessionMetrics":
        """
        Combine two metric sets into a new object.

        Colliding keys raise ProcessingError unless first_write_wins is set,
        in which case the value already held by self is kept.
        """
        merged: dict[str, dict] = {}
        for name in (
            "values",
            "muscle_activity",
            "force_distribution",
            "range_of_motion",
            "anomaly_scores",
            "sensor_values",
        ):
            ours: dict = dict(getattr(self, name))
            theirs: dict = getattr(other, name)
            overlap = ours.keys() & theirs.keys()
            if overlap and not first_write_wins:
                raise ProcessingError(
                    f"conflicting {name} keys: {sorted(str(k) for k in overlap)}"
                )
            for key, value in theirs.items():
                ours.setdefault(key, value)
            merged[name] = ours
        return SessionMetrics(**merged)


class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertCategory(str, enum.Enum):
    MEDICAL = "medical"
    BIOMECHANICAL = "biomechanical"
    PERFORMANCE = "performance"
    SENSOR_ERROR = "sensor_error"
    CONNECTIVITY = "connectivity"


class Alert(BaseModel):
    """
    A dispatched alert.

    Immutable; acknowledgement by the UI collaborator produces a copy
    with acknowledged=True.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: AlertCategory
    severity: AlertSeverity
    sensor_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    payload: dict = Field(default_factory=dict)
    acknowledged: bool = False


class TelemetryBatch(BaseModel):
    """Batch of readings posted by the edge collaborator."""

    readings: list[SensorReading]


class SessionStart(BaseModel):
    """Request body for opening a session."""

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    athlete_id: str
