"""
tests/test_windower.py

Unit tests for gateway/services/windower.py.
"""

import numpy as np
import pytest

from gateway.services.windower import WindowBuffer


def test_buffer_never_exceeds_capacity() -> None:
    """Appending past capacity evicts the oldest samples and counts them."""
    buf = WindowBuffer(capacity=3)
    for value in range(5):
        buf.append(float(value))

    assert len(buf) == 3
    assert buf.is_full()
    assert buf.snapshot().tolist() == [2.0, 3.0, 4.0]
    assert buf.dropped == 2
    assert buf.appended == 5


def test_snapshot_is_a_copy() -> None:
    buf = WindowBuffer(capacity=4)
    buf.append([1.0, 2.0])
    snap = buf.snapshot()
    snap[0, 0] = 99.0
    assert buf.snapshot()[0, 0] == 1.0


def test_vector_samples_give_two_dimensional_snapshot() -> None:
    buf = WindowBuffer(capacity=4)
    buf.append([1.0, 2.0, 3.0])
    buf.append([4.0, 5.0, 6.0])
    assert buf.snapshot().shape == (2, 3)


def test_empty_snapshot() -> None:
    snap = WindowBuffer(capacity=2).snapshot()
    assert isinstance(snap, np.ndarray)
    assert snap.size == 0


def test_samples_since_mark() -> None:
    buf = WindowBuffer(capacity=2)
    mark = buf.appended
    for _ in range(5):
        buf.append(1.0)
    assert buf.samples_since(mark) == 5


def test_clear_keeps_counters() -> None:
    buf = WindowBuffer(capacity=2)
    for _ in range(3):
        buf.append(1.0)
    buf.clear()
    assert len(buf) == 0
    assert buf.dropped == 1


def test_invalid_capacity() -> None:
    with pytest.raises(ValueError):
        WindowBuffer(capacity=0)
