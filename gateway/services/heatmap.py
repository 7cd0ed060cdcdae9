"""
gateway/services/heatmap.py

Bins spatial sensor intensity into a square grid and smooths it for the
dashboard feed. The grid is rebuilt from scratch on every call.
"""

import time
from typing import Iterable, Iterator, Sequence

import numpy as np
import structlog

from gateway.constants import HEATMAP_KERNEL
from gateway.schemas import HeatMapCell, SensorReading

logger = structlog.get_logger(__name__)


def _round_half_away(value: float) -> int:
    return int(np.sign(value) * np.floor(abs(value) + 0.5))


class HeatMapGenerator:
    """
    Grid position per axis is clamp(round(value / resolution), 0, resolution - 1),
    x from the first raw value and y from the second. Cell intensity is the mean
    of those two values clamped to [0, 1]; readings sharing a cell are averaged.

    Smoothing is one in-place pass of the 5-tap kernel along x for every row,
    so each cell re-reads neighbours that were already smoothed. With
    separable=True a true two-pass (x then y) smoothing is applied instead.
    """

    def __init__(
        self,
        resolution: int = 32,
        kernel: Sequence[float] = HEATMAP_KERNEL,
        separable: bool = False,
        latency_budget_ms: float = 100.0,
    ) -> None:
        if resolution <= 0:
            raise ValueError(f"resolution must be positive, got {resolution}")
        self.resolution = resolution
        self.kernel = np.asarray(kernel, dtype=float)
        self.separable = separable
        self.latency_budget_ms = latency_budget_ms

    def grid_position(self, value: float) -> int:
        pos = _round_half_away(value / self.resolution)
        return max(0, min(pos, self.resolution - 1))

    def rasterize(self, readings: Iterable[SensorReading]) -> np.ndarray:
        """Place raw intensities on a (y, x) grid without smoothing."""
        total = np.zeros((self.resolution, self.resolution))
        count = np.zeros((self.resolution, self.resolution))
        for reading in readings:
            values = reading.raw_values[:2]
            if not values or not np.all(np.isfinite(values)):
                logger.debug("heatmap_reading_skipped", sensor_id=reading.sensor_id)
                continue
            x_val = values[0]
            y_val = values[1] if len(values) > 1 else values[0]
            gx, gy = self.grid_position(x_val), self.grid_position(y_val)
            total[gy, gx] += min(max(float(np.mean(values)), 0.0), 1.0)
            count[gy, gx] += 1
        return np.where(count > 0, total / np.maximum(count, 1), 0.0)

    def smooth(self, grid: np.ndarray) -> np.ndarray:
        if self.separable:
            return self._smooth_axis(self._smooth_axis(grid, axis=1), axis=0)
        return self._smooth_rows_in_place(grid.copy())

    def generate(self, readings: Iterable[SensorReading]) -> dict[tuple[int, int], float]:
        start = time.perf_counter()
        # Kernel weights only sum to 1 up to float rounding
        grid = np.clip(self.smooth(self.rasterize(readings)), 0.0, 1.0)
        heat_map = {
            (int(x), int(y)): float(grid[y, x])
            for y, x in zip(*np.nonzero(grid))
        }
        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > self.latency_budget_ms:
            logger.warning(
                "heatmap_over_budget",
                cells=len(heat_map),
                elapsed_ms=round(elapsed_ms, 2),
            )
        return heat_map

    @staticmethod
    def cells(heat_map: dict[tuple[int, int], float]) -> Iterator[HeatMapCell]:
        for (x, y), intensity in sorted(heat_map.items()):
            yield HeatMapCell(grid_x=x, grid_y=y, intensity=min(max(intensity, 0.0), 1.0))

    def _smooth_rows_in_place(self, grid: np.ndarray) -> np.ndarray:
        half = len(self.kernel) // 2
        last = self.resolution - 1
        for y in range(self.resolution):
            row = grid[y]
            for x in range(self.resolution):
                acc = 0.0
                for k, weight in enumerate(self.kernel):
                    nx = max(0, min(x + k - half, last))
                    acc += row[nx] * weight
                row[x] = acc
        return grid

    def _smooth_axis(self, grid: np.ndarray, axis: int) -> np.ndarray:
        half = len(self.kernel) // 2
        padded = np.pad(
            grid,
            [(half, half) if a == axis else (0, 0) for a in range(2)],
            mode="edge",
        )
        out = np.zeros_like(grid)
        for k, weight in enumerate(self.kernel):
            sl = [slice(None), slice(None)]
            sl[axis] = slice(k, k + grid.shape[axis])
            out += weight * padded[tuple(sl)]
        return out
