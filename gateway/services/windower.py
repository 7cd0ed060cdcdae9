"""
gateway/services/windower.py

Fixed-capacity circular buffer of filtered samples for one sensor.
Uses a bounded deque so the oldest sample is evicted when full;
every eviction is counted so the transport can apply upstream backpressure.
"""

import threading
from collections import deque
from typing import Sequence

import numpy as np


class WindowBuffer:
    """Ring buffer of filtered samples (scalars or per-channel vectors)."""

    def __init__(self, capacity: int = 1024) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._data: deque = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self.dropped = 0
        self.appended = 0

    def append(self, value: float | Sequence[float]) -> None:
        with self._lock:
            if len(self._data) == self.capacity:
                self.dropped += 1
            self._data.append(value)
            self.appended += 1

    def snapshot(self) -> np.ndarray:
        """Copy of the current contents, oldest first. Never mutates the buffer."""
        with self._lock:
            items = list(self._data)
        if not items:
            return np.empty(0, dtype=float)
        return np.asarray(items, dtype=float)

    def is_full(self) -> bool:
        return len(self._data) == self.capacity

    def samples_since(self, mark: int) -> int:
        """Number of appends since the given value of `appended`."""
        return self.appended - mark

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
