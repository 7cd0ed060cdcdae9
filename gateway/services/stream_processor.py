"""
gateway/services/stream_processor.py

The stream engine: routes readings to one SensorWorker per sensor and runs
filter -> windower -> detection -> aggregation -> heat map for each pass.

- every sensor owns an asyncio.Queue consumed by its own task
- numeric passes run in asyncio.to_thread so sensors proceed concurrently
- results leave through ReliableStream.send as typed frames
- dispatched alerts are handed to the notification worker and persisted
- baselines are recomputed on a fixed interval and swapped atomically
"""

import asyncio
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pydantic
import structlog

from gateway.constants import IMU_SAMPLING_RATE_HZ, TOF_SAMPLING_RATE_HZ
from gateway.errors import ProcessingError, ValidationError
from gateway.schemas import (
    Alert,
    AlertCategory,
    AnomalyResult,
    CalibrationParams,
    MetricKey,
    SensorChannel,
    SensorReading,
    SessionMetrics,
)
from gateway.services.alerts import AlertPipeline
from gateway.services.anomaly import AnomalyDetector
from gateway.services.calibration import BaselineStore, CalibrationStore, compute_baseline
from gateway.services.heatmap import HeatMapGenerator
from gateway.services.kalman_filter import FilterBank
from gateway.services.metrics import MetricsAggregator, SessionTracker
from gateway.services.notification import hand_off_alert
from gateway.services.persistence import (
    persist_alert,
    persist_baseline,
    persist_session_metrics,
)
from gateway.services.windower import WindowBuffer

logger = structlog.get_logger(__name__)

SAMPLING_RATE_HZ: dict[SensorChannel, float] = {
    SensorChannel.IMU: IMU_SAMPLING_RATE_HZ,
    SensorChannel.TOF: TOF_SAMPLING_RATE_HZ,
}

TRANSPORT_SENSOR_ID = "transport"


def pass_stride(channel: SensorChannel, sample_window_ms: int) -> int:
    """New samples between two passes: one calibration window at the nominal rate."""
    return max(1, math.ceil(SAMPLING_RATE_HZ[channel] * sample_window_ms / 1000))


@dataclass
class PassOutcome:
    """Everything one numeric pass produced for emission."""

    result: AnomalyResult
    metrics: SessionMetrics
    alerts: list[Alert] = field(default_factory=list)
    heat_map: Optional[dict[tuple[int, int], float]] = None


class SensorWorker:
    """Per-sensor state: inbox, filters, ring buffer and counters."""

    def __init__(
        self,
        sensor_id: str,
        channel: SensorChannel,
        channels: int,
        calibration: CalibrationParams,
        buffer_capacity: int,
        queue_capacity: int,
    ) -> None:
        self.sensor_id = sensor_id
        self.channel = channel
        self.channels = channels
        self.queue: asyncio.Queue[SensorReading] = asyncio.Queue(maxsize=queue_capacity)
        self.filters = FilterBank(calibration.measurement_noise, calibration.process_noise)
        self.window = WindowBuffer(buffer_capacity)
        # Raw readings feed the heat map, which bins spatial positions
        self.recent: deque[SensorReading] = deque(maxlen=buffer_capacity)
        self.pass_mark = 0
        self.accepted = 0
        self.rejected = 0
        self.queue_dropped = 0
        self.passes = 0
        self.last_result: Optional[AnomalyResult] = None
        self.task: Optional[asyncio.Task] = None

    def offer(self, reading: SensorReading) -> None:
        """Enqueue without blocking; a full inbox evicts its oldest reading."""
        if self.queue.full():
            self.queue.get_nowait()
            self.queue.task_done()
            self.queue_dropped += 1
            logger.warning(
                "sensor_queue_overflow",
                sensor_id=self.sensor_id,
                dropped_total=self.queue_dropped,
            )
        self.queue.put_nowait(reading)
        self.accepted += 1

    def status(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "channels": self.channels,
            "queued": self.queue.qsize(),
            "accepted": self.accepted,
            "rejected": self.rejected,
            "queue_dropped": self.queue_dropped,
            "window_size": len(self.window),
            "window_dropped": self.window.dropped,
            "passes": self.passes,
            "last_confidence": self.last_result.confidence if self.last_result else None,
        }


class StreamProcessor:
    """
    Owns every pipeline component for one gateway process.

    Readings enter through ingest() (HTTP batches) or the transport's inbound
    queue. At most one session is active; metrics flow into its tracker.
    """

    def __init__(
        self,
        transport: Optional[Any] = None,
        calibration: Optional[CalibrationStore] = None,
        baselines: Optional[BaselineStore] = None,
        detector: Optional[AnomalyDetector] = None,
        heatmap: Optional[HeatMapGenerator] = None,
        aggregator: Optional[MetricsAggregator] = None,
        alerts: Optional[AlertPipeline] = None,
        quality_floor: float = 50.0,
        buffer_capacity: int = 1024,
        queue_capacity: int = 2048,
        baseline_refresh_s: float = 300.0,
        latency_budget_ms: float = 100.0,
    ) -> None:
        self.transport = transport
        self.calibration = calibration or CalibrationStore()
        self.baselines = baselines or BaselineStore()
        self.detector = detector or AnomalyDetector(latency_budget_ms=latency_budget_ms)
        self.heatmap = heatmap or HeatMapGenerator(latency_budget_ms=latency_budget_ms)
        self.aggregator = aggregator or MetricsAggregator()
        self.alerts = alerts or AlertPipeline(self.detector.anomaly_threshold)
        self.quality_floor = quality_floor
        self.buffer_capacity = buffer_capacity
        self.queue_capacity = queue_capacity
        self.baseline_refresh_s = baseline_refresh_s
        self.latency_budget_ms = latency_budget_ms

        self.workers: dict[str, SensorWorker] = {}
        self.session: Optional[SessionTracker] = None
        self.rejected_total = 0
        self.latency_overruns = 0
        self.running = False
        self._tasks: list[asyncio.Task] = []
        self._deliveries: set[asyncio.Task] = set()

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        for worker in self.workers.values():
            self._spawn_worker(worker)
        self._tasks.append(asyncio.create_task(self._refresh_loop(), name="baseline-refresh"))
        if self.transport is not None:
            self._tasks.append(asyncio.create_task(self._pump_inbound(), name="inbound-pump"))
            self._tasks.append(asyncio.create_task(self._watch_transport(), name="transport-watch"))
        logger.info("stream_processor_started", sensors=len(self.workers))

    async def stop(self) -> None:
        self.running = False
        tasks = self._tasks + [w.task for w in self.workers.values() if w.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        for worker in self.workers.values():
            worker.task = None
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)
        if self.transport is not None:
            await self.transport.stop()
        logger.info("stream_processor_stopped")

    async def flush(self) -> None:
        """Wait until every queued reading has been processed."""
        await asyncio.gather(*(w.queue.join() for w in self.workers.values()))

    def restart_transport(self) -> None:
        """Manual intervention after the reconnect budget ran out."""
        if self.transport is None:
            return
        self.transport.restart()
        self._tasks.append(asyncio.create_task(self._watch_transport(), name="transport-watch"))
        logger.info("transport_restart_requested")

    # ── Ingress ──────────────────────────────────────────────

    def ingest(self, reading: SensorReading) -> bool:
        """Validate and route one reading. Rejections are counted, never raised."""
        try:
            worker = self._validate(reading)
        except ValidationError as exc:
            self.rejected_total += 1
            existing = self.workers.get(reading.sensor_id)
            if existing is not None:
                existing.rejected += 1
            logger.warning(
                "reading_rejected",
                sensor_id=reading.sensor_id,
                field=exc.field,
                reason=str(exc),
            )
            return False
        worker.offer(reading)
        return True

    def ingest_message(self, message: dict) -> bool:
        """Turn an inbound transport message into a reading and route it."""
        try:
            reading = SensorReading.model_validate(message)
        except pydantic.ValidationError as exc:
            self.rejected_total += 1
            logger.warning(
                "inbound_message_rejected",
                sensor_id=message.get("sensor_id"),
                error=exc.errors()[0].get("msg"),
            )
            return False
        return self.ingest(reading)

    def _validate(self, reading: SensorReading) -> SensorWorker:
        if reading.quality_score < self.quality_floor:
            raise ValidationError(
                f"quality {reading.quality_score} below floor {self.quality_floor}",
                field="quality_score",
            )
        if not reading.raw_values:
            raise ValidationError("reading carries no values", field="raw_values")
        if not all(math.isfinite(v) for v in reading.raw_values):
            raise ValidationError("reading carries non-finite values", field="raw_values")

        worker = self.workers.get(reading.sensor_id)
        if worker is None:
            return self._create_worker(reading)
        if reading.channel is not worker.channel:
            raise ValidationError(
                f"sensor {reading.sensor_id} is {worker.channel.value}, got {reading.channel.value}",
                field="channel",
            )
        if len(reading.raw_values) != worker.channels:
            raise ValidationError(
                f"expected {worker.channels} values, got {len(reading.raw_values)}",
                field="raw_values",
            )
        return worker

    def _create_worker(self, reading: SensorReading) -> SensorWorker:
        worker = SensorWorker(
            reading.sensor_id,
            reading.channel,
            len(reading.raw_values),
            self.calibration.get(reading.sensor_id),
            self.buffer_capacity,
            self.queue_capacity,
        )
        self.workers[reading.sensor_id] = worker
        if self.running:
            self._spawn_worker(worker)
        logger.info(
            "sensor_registered",
            sensor_id=reading.sensor_id,
            channel=reading.channel.value,
            channels=worker.channels,
        )
        return worker

    def _spawn_worker(self, worker: SensorWorker) -> None:
        worker.task = asyncio.create_task(
            self._consume(worker), name=f"sensor-{worker.sensor_id}"
        )

    # ── Per-sensor worker ────────────────────────────────────

    async def _consume(self, worker: SensorWorker) -> None:
        while True:
            reading = await worker.queue.get()
            try:
                await self._handle(worker, reading)
            except ProcessingError as exc:
                logger.warning(
                    "processing_skipped",
                    sensor_id=worker.sensor_id,
                    error=str(exc),
                )
            finally:
                worker.queue.task_done()

    async def _handle(self, worker: SensorWorker, reading: SensorReading) -> None:
        filtered = worker.filters.update(reading.raw_values)
        worker.window.append(filtered)
        worker.recent.append(reading)

        params = self.calibration.get(worker.sensor_id)
        if worker.window.samples_since(worker.pass_mark) < pass_stride(
            worker.channel, params.sample_window_ms
        ):
            return
        worker.pass_mark = worker.window.appended

        started = time.perf_counter()
        outcome = await asyncio.to_thread(self._run_pass, worker, reading)
        worker.passes += 1
        worker.last_result = outcome.result
        self._emit(worker, outcome)

        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > self.latency_budget_ms:
            self.latency_overruns += 1
            logger.warning(
                "latency_budget_exceeded",
                sensor_id=worker.sensor_id,
                elapsed_ms=round(elapsed_ms, 2),
                budget_ms=self.latency_budget_ms,
            )

    def _run_pass(self, worker: SensorWorker, reading: SensorReading) -> PassOutcome:
        """Numeric part of one pass; runs off the event loop."""
        window = worker.window.snapshot()
        baseline = self.baselines.get(worker.sensor_id)
        result = self.detector.detect_channels(
            window, baseline, worker.sensor_id, reading.timestamp
        )

        dispatched: list[Alert] = []
        if result.actionable:
            alert = self.alerts.submit_anomaly(result)
            if alert is not None:
                dispatched.append(alert)

        if worker.channel is SensorChannel.IMU:
            batch = self.aggregator.aggregate(window, None, imu_sensor_id=worker.sensor_id)
        else:
            batch = self.aggregator.aggregate(
                None,
                window,
                tof_sensor_id=worker.sensor_id,
                tissue_baseline=self.baselines.tissue_baseline(worker.sensor_id),
            )
        batch.anomaly_scores[worker.sensor_id] = result.confidence

        values = dict(batch.values)
        session = self.session
        if session is not None:
            session.update(batch, worker.sensor_id)
            session.record_anomaly(result)
            fatigue = session.sensor_value(worker.sensor_id, MetricKey.FATIGUE_INDEX)
            if fatigue is not None:
                values[MetricKey.FATIGUE_INDEX] = fatigue
        for key, value in values.items():
            alert = self.alerts.submit_metric(worker.sensor_id, key, value)
            if alert is not None:
                dispatched.append(alert)

        heat_map = None
        if worker.channel is SensorChannel.TOF:
            heat_map = self.heatmap.generate(list(worker.recent))

        return PassOutcome(result=result, metrics=batch, alerts=dispatched, heat_map=heat_map)

    # ── Egress ───────────────────────────────────────────────

    def _emit(self, worker: SensorWorker, outcome: PassOutcome) -> None:
        if outcome.result.actionable:
            self._send({"type": "anomaly", "anomaly": outcome.result.model_dump(mode="json")})
        self._send(
            {
                "type": "metrics",
                "sensor_id": worker.sensor_id,
                "metrics": outcome.metrics.model_dump(mode="json"),
            }
        )
        if outcome.heat_map is not None:
            self._send(
                {
                    "type": "heatmap",
                    "sensor_id": worker.sensor_id,
                    "resolution": self.heatmap.resolution,
                    "cells": [
                        cell.model_dump() for cell in self.heatmap.cells(outcome.heat_map)
                    ],
                }
            )
        for alert in outcome.alerts:
            self._dispatch(alert)

    def _dispatch(self, alert: Alert) -> None:
        self._send({"type": "alert", "alert": alert.model_dump(mode="json")})
        task = asyncio.create_task(self._deliver(alert))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, alert: Alert) -> None:
        await asyncio.gather(hand_off_alert(alert), persist_alert(alert))

    def _send(self, message: dict) -> None:
        if self.transport is not None:
            self.transport.send(message)

    # ── Calibration & baselines ──────────────────────────────

    def apply_calibration(self, sensor_id: str, params) -> CalibrationParams:
        """Store new calibration and retune the live filters of that sensor."""
        applied = self.calibration.apply_calibration(sensor_id, params)
        worker = self.workers.get(sensor_id)
        if worker is not None:
            worker.filters.retune(applied.measurement_noise, applied.process_noise)
        return applied

    async def refresh_baselines(self) -> int:
        """Recompute every sensor's baseline from its current window."""
        refreshed = 0
        for worker in list(self.workers.values()):
            window = worker.window.snapshot()
            if window.size == 0:
                continue
            try:
                profile = await asyncio.to_thread(compute_baseline, worker.sensor_id, window)
            except ProcessingError as exc:
                logger.warning("baseline_refresh_skipped", sensor_id=worker.sensor_id, error=str(exc))
                continue
            tissue = np.ravel(window) if worker.channel is SensorChannel.TOF else None
            self.baselines.swap(profile, tissue)
            refreshed += 1
            await persist_baseline(profile)
        logger.info("baselines_refreshed", sensors=refreshed)
        return refreshed

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.baseline_refresh_s)
            await self.refresh_baselines()

    # ── Transport ────────────────────────────────────────────

    async def _pump_inbound(self) -> None:
        while True:
            message = await self.transport.get_reading()
            if message.get("type", "reading") != "reading":
                logger.debug("inbound_message_ignored", message_type=message.get("type"))
                continue
            self.ingest_message(message)

    async def _watch_transport(self) -> None:
        await self.transport.start()
        if self.transport.terminal:
            alert = self.alerts.raise_sensor_error(
                TRANSPORT_SENSOR_ID,
                "reconnect attempts exhausted",
                AlertCategory.CONNECTIVITY,
            )
            if alert is not None:
                self._dispatch(alert)

    # ── Sessions ─────────────────────────────────────────────

    def start_session(self, session_id: str, athlete_id: str) -> SessionTracker:
        if self.session is not None:
            raise ValidationError(
                f"session {self.session.session_id} is still active", field="session_id"
            )
        self.session = SessionTracker(session_id, athlete_id)
        logger.info("session_started", session_id=session_id, athlete_id=athlete_id)
        return self.session

    async def end_session(self) -> Optional[SessionMetrics]:
        """Checkpoint and discard the active session."""
        tracker = self.session
        if tracker is None:
            return None
        self.session = None
        await persist_session_metrics(tracker)
        logger.info("session_ended", session_id=tracker.session_id, batches=tracker.batches)
        return tracker.snapshot()

    def status(self) -> dict[str, Any]:
        transport: dict[str, Any] = {"configured": self.transport is not None}
        if self.transport is not None:
            transport.update(
                state=self.transport.state.value,
                terminal=self.transport.terminal,
                attempt=self.transport.attempt,
                pending_outbound=len(self.transport.pending_outbound()),
                stats=self.transport.stats.to_dict(),
            )
        return {
            "running": self.running,
            "session_id": self.session.session_id if self.session else None,
            "rejected_total": self.rejected_total,
            "latency_overruns": self.latency_overruns,
            "alerts": {
                "dispatched": self.alerts.dispatched_total,
                "suppressed": self.alerts.suppressed_total,
            },
            "transport": transport,
            "sensors": {sid: w.status() for sid, w in self.workers.items()},
        }
