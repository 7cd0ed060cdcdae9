"""
gateway/services/kalman_filter.py

Scalar recursive (Kalman-style) filter used to denoise each sensor channel.
One filter instance per channel; FilterBank holds the instances for one sensor.
"""

from typing import Optional, Sequence

from gateway.constants import MEASUREMENT_NOISE_DEFAULT, PROCESS_NOISE_DEFAULT
from gateway.schemas import FilterState


class KalmanFilter1D:
    """Simple 1D Kalman filter for noise reduction."""

    def __init__(
        self,
        measurement_noise: float = MEASUREMENT_NOISE_DEFAULT,
        process_noise: float = PROCESS_NOISE_DEFAULT,
        initial_value: Optional[float] = None,
    ) -> None:
        self.R, self.Q = measurement_noise, process_noise
        self.x: Optional[float] = initial_value
        self.P = 1.0

    def update(self, measurement: float) -> float:
        # First measurement seeds the estimate when no initial value was given
        if self.x is None:
            self.x = float(measurement)
            return self.x
        predicted = self.P + self.Q
        gain = predicted / (predicted + self.R)
        self.x = self.x + gain * (measurement - self.x)
        self.P = (1 - gain) * predicted
        return self.x

    @property
    def value(self) -> Optional[float]:
        return self.x

    @property
    def state(self) -> FilterState:
        return FilterState(estimate=self.x or 0.0, estimate_error=self.P)

    def reset(self, value: Optional[float] = None) -> None:
        self.x, self.P = value, 1.0


class FilterBank:
    """Independent filters for every channel index of one sensor."""

    def __init__(
        self,
        measurement_noise: float = MEASUREMENT_NOISE_DEFAULT,
        process_noise: float = PROCESS_NOISE_DEFAULT,
    ) -> None:
        self.measurement_noise = measurement_noise
        self.process_noise = process_noise
        self._filters: list[KalmanFilter1D] = []

    def update(self, values: Sequence[float]) -> list[float]:
        while len(self._filters) < len(values):
            self._filters.append(
                KalmanFilter1D(self.measurement_noise, self.process_noise)
            )
        return [f.update(v) for f, v in zip(self._filters, values)]

    def retune(self, measurement_noise: float, process_noise: float) -> None:
        """Apply new noise constants to every channel without losing estimates."""
        self.measurement_noise, self.process_noise = measurement_noise, process_noise
        for f in self._filters:
            f.R, f.Q = measurement_noise, process_noise

    @property
    def states(self) -> list[FilterState]:
        return [f.state for f in self._filters]

    def __len__(self) -> int:
        return len(self._filters)

    def reset(self) -> None:
        for f in self._filters:
            f.reset()
