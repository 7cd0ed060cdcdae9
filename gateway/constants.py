"""
gateway/constants.py

Sensor, calibration and alerting constants used by the stream pipeline.
All numeric thresholds must be referenced from this module.
Magic numbers in processing logic are prohibited.
"""

# ── Sampling rates (Hz) ──────────────────────────────────────
IMU_SAMPLING_RATE_HZ: float = 200.0
TOF_SAMPLING_RATE_HZ: float = 100.0

# ── Calibration ranges (inclusive) and defaults ──────────────
TOF_GAIN_MIN: float = 1.0
TOF_GAIN_MAX: float = 16.0
TOF_GAIN_DEFAULT: float = 8.0

IMU_DRIFT_MIN_DEG: float = 0.1
IMU_DRIFT_MAX_DEG: float = 2.0
IMU_DRIFT_DEFAULT_DEG: float = 0.5

PRESSURE_THRESHOLD_MIN_KG: float = 0.1
PRESSURE_THRESHOLD_MAX_KG: float = 5.0
PRESSURE_THRESHOLD_DEFAULT_KG: float = 1.0

SAMPLE_WINDOW_MIN_MS: int = 50
SAMPLE_WINDOW_MAX_MS: int = 500
SAMPLE_WINDOW_DEFAULT_MS: int = 100

FILTER_CUTOFF_MIN_HZ: float = 0.5
FILTER_CUTOFF_MAX_HZ: float = 10.0
FILTER_CUTOFF_DEFAULT_HZ: float = 2.0

# Kalman noise constants of the original on-device processor
MEASUREMENT_NOISE_DEFAULT: float = 0.1
PROCESS_NOISE_DEFAULT: float = 0.1

# ── Reading validation ───────────────────────────────────────
QUALITY_SCORE_MIN: float = 0.0
QUALITY_SCORE_MAX: float = 100.0

# ── Anomaly classification (multiples of baseline stddev) ────
SPIKE_STD_MULTIPLIER: float = 3.0
OUTLIER_STD_MULTIPLIER: float = 2.0
DISCONTINUITY_STD_MULTIPLIER: float = 0.5

# ── Heat map ─────────────────────────────────────────────────
HEATMAP_KERNEL: tuple[float, ...] = (0.1, 0.2, 0.4, 0.2, 0.1)

# ── Metrics ──────────────────────────────────────────────────
# Gravity axis used as the joint-angle reference vector
JOINT_REFERENCE_VECTOR: tuple[float, float, float] = (0.0, 0.0, 1.0)
IMU_AXES: int = 3

# ── Alert severity (confidence cut-offs) ─────────────────────
SEVERITY_CRITICAL_CONFIDENCE: float = 0.95
SEVERITY_HIGH_CONFIDENCE: float = 0.85

# ── Alert cooldowns (seconds) ────────────────────────────────
COOLDOWN_MEDICAL_S: float = 300.0
COOLDOWN_SENSOR_FAULT_S: float = 5.0
COOLDOWN_GENERAL_S: float = 1.0

# ── Metric alert thresholds ──────────────────────────────────
ASYMMETRY_ALERT_THRESHOLD: float = 0.15
SYMMETRY_ALERT_THRESHOLD: float = 0.15
TISSUE_DEFORMATION_ALERT_THRESHOLD: float = 5.0
FATIGUE_ALERT_THRESHOLD: float = 0.30

# ── Transport ────────────────────────────────────────────────
HEARTBEAT_MISSED_INTERVALS: int = 2
ZLIB_COMPRESSION_LEVEL: int = 6

# ── Category-specific medium-severity cut-offs ───────────────
MEDIUM_CONFIDENCE_BY_CATEGORY: dict[str, float] = {
    "medical": 0.50,
    "biomechanical": 0.60,
    "performance": 0.70,
    "sensor_error": 0.40,
    "connectivity": 0.40,
}

# ── Dispatched alert ledger ──────────────────────────────────
ALERT_LEDGER_MAX_LEN: int = 1000
