"""
gateway/main.py

FastAPI application entry point for the Gateway service.
Builds the stream engine and its transport in the lifespan and registers routers.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from config import settings
from gateway.routers.alerts import router as alerts_router
from gateway.routers.calibration import router as calibration_router
from gateway.routers.sessions import router as sessions_router
from gateway.routers.telemetry import router as telemetry_router
from gateway.services.alerts import AlertPipeline
from gateway.services.anomaly import AnomalyDetector
from gateway.services.heatmap import HeatMapGenerator
from gateway.services.stream_processor import StreamProcessor
from gateway.services.transport import ReliableStream

logger = structlog.get_logger(__name__)


def build_engine() -> StreamProcessor:
    """Wire every pipeline component from settings."""
    transport = None
    if settings.stream_url:
        transport = ReliableStream(
            settings.stream_url,
            heartbeat_interval=settings.heartbeat_interval_s,
            backoff_base=settings.backoff_base_s,
            backoff_cap=settings.backoff_cap_s,
            max_attempts=settings.max_reconnect_attempts,
            queue_capacity=settings.transport_queue_capacity,
        )
    return StreamProcessor(
        transport=transport,
        detector=AnomalyDetector(
            anomaly_threshold=settings.anomaly_threshold,
            moving_average_width=settings.moving_average_width,
            latency_budget_ms=settings.latency_budget_ms,
        ),
        heatmap=HeatMapGenerator(
            resolution=settings.heatmap_resolution,
            latency_budget_ms=settings.latency_budget_ms,
        ),
        alerts=AlertPipeline(anomaly_threshold=settings.anomaly_threshold),
        quality_floor=settings.quality_floor,
        buffer_capacity=settings.buffer_capacity,
        queue_capacity=settings.sensor_queue_capacity,
        baseline_refresh_s=settings.baseline_refresh_s,
        latency_budget_ms=settings.latency_budget_ms,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle: startup and shutdown."""
    engine = build_engine()
    app.state.engine = engine
    await engine.start()
    logger.info("gateway_starting", port=8000, stream_url=settings.stream_url)
    yield
    logger.info("gateway_shutting_down")
    if engine.session is not None:
        await engine.end_session()
    await engine.stop()


app = FastAPI(
    title="Smart Apparel Gateway",
    description="Real-time garment sensor stream processing service",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(telemetry_router)
app.include_router(calibration_router)
app.include_router(alerts_router)
app.include_router(sessions_router)
