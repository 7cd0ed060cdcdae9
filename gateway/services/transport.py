"""
gateway/services/transport.py

Reliable bidirectional stream to the garment edge hub.
- reconnect with exponential backoff (base * 2**attempt, capped), bounded attempts
- application heartbeat; two missed acknowledgements force a reconnect
- zlib-compressed JSON frames
- bounded inbound/outbound queues that evict the oldest entry and count it

The numeric pipeline only ever calls send() and get_reading(); neither blocks
on the network.
"""

import asyncio
import enum
import itertools
import json
import time
import zlib
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog
import websockets

from gateway.constants import HEARTBEAT_MISSED_INTERVALS, ZLIB_COMPRESSION_LEVEL
from gateway.errors import TransportError

logger = structlog.get_logger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class TransportStats:
    sent: int = 0
    received: int = 0
    dropped_outbound: int = 0
    dropped_inbound: int = 0
    reconnects: int = 0
    heartbeat_timeouts: int = 0
    rejected_frames: int = 0
    raw_bytes: int = 0
    compressed_bytes: int = 0

    @property
    def compression_ratio(self) -> float:
        return self.raw_bytes / self.compressed_bytes if self.compressed_bytes else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": self.sent,
            "received": self.received,
            "dropped_outbound": self.dropped_outbound,
            "dropped_inbound": self.dropped_inbound,
            "reconnects": self.reconnects,
            "heartbeat_timeouts": self.heartbeat_timeouts,
            "rejected_frames": self.rejected_frames,
            "compression_ratio": round(self.compression_ratio, 2),
        }


def encode_frame(message: dict, level: int = ZLIB_COMPRESSION_LEVEL) -> tuple[bytes, int]:
    """JSON-encode and compress; returns the frame and its uncompressed size."""
    raw = json.dumps(message, separators=(",", ":"), default=str).encode("utf-8")
    return zlib.compress(raw, level), len(raw)


def decode_frame(frame: bytes | str) -> dict:
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = zlib.decompress(frame)
        except zlib.error as exc:
            raise TransportError(f"undecodable frame: {exc}") from exc
    try:
        message = json.loads(frame)
    except (ValueError, UnicodeDecodeError) as exc:
        raise TransportError(f"malformed frame: {exc}") from exc
    if not isinstance(message, dict):
        raise TransportError(f"frame is not an object: {type(message).__name__}")
    return message


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    return min(base * (2 ** attempt), cap)


class ReliableStream:
    """
    Persistent stream carrying raw readings in and results out.

    Outbound messages stay queued until the socket accepts them, so frames
    buffered while disconnected are replayed in their original order after
    reconnecting. Overflow drops the oldest queued frame and counts it.
    """

    def __init__(
        self,
        url: str,
        connector: Optional[Connector] = None,
        heartbeat_interval: float = 5.0,
        backoff_base: float = 0.5,
        backoff_cap: float = 30.0,
        max_attempts: int = 5,
        queue_capacity: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self._connector = connector or websockets.connect
        self.heartbeat_interval = heartbeat_interval
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.max_attempts = max_attempts
        self.queue_capacity = queue_capacity
        self._clock = clock
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.stats = TransportStats()
        self.attempt = 0
        self.terminal = False
        self._outbound: deque[tuple[int, dict]] = deque()
        self._inbound: deque[dict] = deque()
        self._outbound_ready = asyncio.Event()
        self._inbound_ready = asyncio.Event()
        self._seq = itertools.count()
        self._last_ack = 0.0
        self._runner: Optional[asyncio.Task] = None
        self._stopping = False
        self._connected = asyncio.Event()

    # ── Pipeline-facing API ──────────────────────────────────

    def send(self, message: dict) -> None:
        """Queue an outbound message; never blocks."""
        if len(self._outbound) >= self.queue_capacity:
            dropped_seq, dropped = self._outbound.popleft()
            self.stats.dropped_outbound += 1
            logger.warning(
                "outbound_dropped",
                seq=dropped_seq,
                message_type=dropped.get("type"),
                dropped_total=self.stats.dropped_outbound,
            )
        self._outbound.append((next(self._seq), message))
        self._outbound_ready.set()

    async def get_reading(self) -> dict:
        """Wait for the next inbound message."""
        while not self._inbound:
            self._inbound_ready.clear()
            await self._inbound_ready.wait()
        return self._inbound.popleft()

    def pending_outbound(self) -> list[dict]:
        return [m for _, m in self._outbound]

    @property
    def inbound_depth(self) -> int:
        return len(self._inbound)

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout)

    # ── Lifecycle ────────────────────────────────────────────

    def start(self) -> asyncio.Task:
        if self._runner is None or self._runner.done():
            self._stopping = False
            self.terminal = False
            self._runner = asyncio.create_task(self._run(), name="reliable-stream")
        return self._runner

    async def stop(self) -> None:
        self._stopping = True
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
        self._set_state(ConnectionState.DISCONNECTED)

    def restart(self) -> asyncio.Task:
        """External intervention after the retry budget is exhausted."""
        self.attempt = 0
        return self.start()

    # ── Internals ────────────────────────────────────────────

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            logger.info("transport_state_changed", previous=self.state.value, state=state.value)
            self.state = state
        if state is ConnectionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()

    async def _run(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        while not self._stopping:
            try:
                ws = await self._connector(self.url)
            except Exception as exc:
                logger.warning(
                    "transport_connect_failed",
                    url=self.url,
                    attempt=self.attempt,
                    error=str(exc),
                )
            else:
                self._set_state(ConnectionState.CONNECTED)
                try:
                    await self._serve(ws)
                except Exception as exc:
                    logger.warning("transport_lost", url=self.url, error=str(exc))
                finally:
                    await self._close(ws)
                if self._stopping:
                    break

            if self.attempt >= self.max_attempts:
                self.terminal = True
                self._set_state(ConnectionState.DISCONNECTED)
                logger.error(
                    "transport_retry_budget_exhausted",
                    url=self.url,
                    attempts=self.attempt,
                )
                return
            delay = backoff_delay(self.attempt, self.backoff_base, self.backoff_cap)
            self.attempt += 1
            self.stats.reconnects += 1
            self._set_state(ConnectionState.RECONNECTING)
            logger.info("transport_backoff", attempt=self.attempt, delay_s=delay)
            await self._sleep(delay)

    async def _serve(self, ws: Any) -> None:
        self._last_ack = self._clock()
        tasks = [
            asyncio.create_task(self._send_loop(ws)),
            asyncio.create_task(self._receive_loop(ws)),
            asyncio.create_task(self._heartbeat_loop(ws)),
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None:
                raise exc
        raise TransportError("stream closed by peer")

    async def _send_loop(self, ws: Any) -> None:
        while True:
            if not self._outbound:
                self._outbound_ready.clear()
                await self._outbound_ready.wait()
                continue
            seq, message = self._outbound[0]
            frame, raw_size = encode_frame(message)
            try:
                await ws.send(frame)
            except Exception as exc:
                raise TransportError(f"send failed: {exc}") from exc
            # The head may have been evicted while the send was in flight
            if self._outbound and self._outbound[0][0] == seq:
                self._outbound.popleft()
            self.stats.sent += 1
            self.stats.raw_bytes += raw_size
            self.stats.compressed_bytes += len(frame)

    async def _receive_loop(self, ws: Any) -> None:
        async for frame in ws:
            try:
                message = decode_frame(frame)
            except TransportError as exc:
                self.stats.rejected_frames += 1
                logger.warning("inbound_frame_rejected", error=str(exc))
                continue
            if message.get("type") == "heartbeat_ack":
                self._last_ack = self._clock()
                if self.attempt:
                    # Retry budget refills only after a heartbeat round-trip
                    logger.info("transport_healthy", attempts_used=self.attempt)
                    self.attempt = 0
                continue
            self._push_inbound(message)

    async def _heartbeat_loop(self, ws: Any) -> None:
        beat = itertools.count()
        while True:
            silence = self._clock() - self._last_ack
            if silence > HEARTBEAT_MISSED_INTERVALS * self.heartbeat_interval:
                self.stats.heartbeat_timeouts += 1
                raise TransportError(f"no heartbeat ack for {silence:.1f}s")
            frame, _ = encode_frame({"type": "heartbeat", "seq": next(beat)})
            try:
                await ws.send(frame)
            except Exception as exc:
                raise TransportError(f"heartbeat send failed: {exc}") from exc
            await asyncio.sleep(self.heartbeat_interval)

    def _push_inbound(self, message: dict) -> None:
        if len(self._inbound) >= self.queue_capacity:
            self._inbound.popleft()
            self.stats.dropped_inbound += 1
        self._inbound.append(message)
        self.stats.received += 1
        self._inbound_ready.set()

    @staticmethod
    async def _close(ws: Any) -> None:
        try:
            await ws.close()
        except Exception as exc:
            logger.debug("transport_close_failed", error=str(exc))
