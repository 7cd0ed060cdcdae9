"""
tests/fixtures.py

Shared test data and helper functions for constructing test payloads.
All tests must use these fixtures instead of hardcoding test values.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from gateway.schemas import (
    Alert,
    AlertCategory,
    AlertSeverity,
    BaselineProfile,
    SensorChannel,
    SensorReading,
)
from gateway.services.transport import decode_frame, encode_frame

BASE_TIME = datetime(2024, 6, 15, 13, 30, 0, tzinfo=timezone.utc)


def build_reading(
    sensor_id: str = "imu_left_thigh",
    channel: SensorChannel = SensorChannel.IMU,
    raw_values: list[float] | None = None,
    quality_score: float = 90.0,
    offset_ms: int = 0,
) -> SensorReading:
    """Build a SensorReading with sensible defaults for testing."""
    return SensorReading(
        sensor_id=sensor_id,
        channel=channel,
        timestamp=BASE_TIME + timedelta(milliseconds=offset_ms),
        raw_values=raw_values if raw_values is not None else [0.1, 0.2, 9.8],
        quality_score=quality_score,
    )


def build_tof_reading(
    sensor_id: str = "tof_left_quad",
    raw_values: list[float] | None = None,
    quality_score: float = 90.0,
    offset_ms: int = 0,
) -> SensorReading:
    return build_reading(
        sensor_id=sensor_id,
        channel=SensorChannel.TOF,
        raw_values=raw_values if raw_values is not None else [0.4, 0.6],
        quality_score=quality_score,
        offset_ms=offset_ms,
    )


def build_baseline(
    sensor_id: str = "imu_left_thigh",
    mean_vector: list[float] | None = None,
    variance_vector: list[float] | None = None,
) -> BaselineProfile:
    return BaselineProfile(
        sensor_id=sensor_id,
        mean_vector=mean_vector if mean_vector is not None else [10.0],
        variance_vector=variance_vector if variance_vector is not None else [1.0],
        last_updated=BASE_TIME,
    )


def build_alert(
    sensor_id: str = "imu_left_thigh",
    category: AlertCategory = AlertCategory.BIOMECHANICAL,
    severity: AlertSeverity = AlertSeverity.HIGH,
) -> Alert:
    return Alert(
        type=category,
        severity=severity,
        sensor_id=sensor_id,
        timestamp=BASE_TIME,
        payload={"confidence": 0.9},
    )


def outlier_window() -> list[float]:
    """90 quiet samples followed by a burst of 10 large ones."""
    return [10.0] * 90 + [100.0] * 10


# ── Test doubles ────────────────────────────────────────────


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWebSocket:
    """
    In-memory websocket.

    Frames sent by the client are decoded into `sent`; frames pushed with
    `feed()` are yielded by async iteration. `ack_heartbeats` answers every
    heartbeat so the connection stays healthy.
    """

    def __init__(self, ack_heartbeats: bool = True, fail_after: int | None = None) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self.ack_heartbeats = ack_heartbeats
        self.fail_after = fail_after
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, frame: bytes) -> None:
        message = decode_frame(frame)
        if message.get("type") != "heartbeat":
            if self.fail_after is not None and len(self.sent) >= self.fail_after:
                raise ConnectionError("socket dropped")
            self.sent.append(message)
        elif self.ack_heartbeats:
            self.feed({"type": "heartbeat_ack", "seq": message["seq"]})

    def feed(self, message: dict) -> None:
        frame, _ = encode_frame(message)
        self._incoming.put_nowait(frame)

    def close_from_peer(self) -> None:
        self._incoming.put_nowait(None)

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> bytes:
        frame = await self._incoming.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class FakeConnector:
    """Hands out prepared sockets; an exception in the script is raised instead."""

    def __init__(self, *script) -> None:
        self.script = list(script)
        self.calls = 0

    async def __call__(self, url: str):
        self.calls += 1
        if not self.script:
            raise ConnectionRefusedError(url)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


async def instant_sleep(delay: float) -> None:
    """Backoff sleep that records nothing and yields once."""
    await asyncio.sleep(0)
