"""
config.py

Centralized configuration management using pydantic-settings.
All modules must import settings from this file.
Direct os.getenv() calls are prohibited elsewhere.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings loaded from .env file."""

    # Database (storage collaborator)
    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_user: str = "apparel"
    mysql_password: str = ""
    mysql_db: str = "smart_apparel"

    # Redis (Celery broker for the notification collaborator)
    redis_url: str = "redis://127.0.0.1:6379/0"

    # Garment stream
    stream_url: str = "ws://127.0.0.1:8765/stream"
    heartbeat_interval_s: float = 5.0
    backoff_base_s: float = 0.5
    backoff_cap_s: float = 30.0
    max_reconnect_attempts: int = 5
    transport_queue_capacity: int = 1000

    # Numeric pipeline
    quality_floor: float = 50.0
    anomaly_threshold: float = 0.85
    buffer_capacity: int = 1024
    moving_average_width: int = 10
    heatmap_resolution: int = 32
    baseline_refresh_s: float = 300.0
    latency_budget_ms: float = 100.0
    sensor_queue_capacity: int = 2048

    # Push notifications
    fcm_server_key: str = ""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
