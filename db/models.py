"""
db/models.py

SQLAlchemy 2.0 async ORM model definitions.
Checkpoint tables written by the gateway at session end, alert dispatch
and baseline refresh.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from config import settings

# Async engine with connection pool settings
engine = create_async_engine(
    f"mysql+aiomysql://{settings.mysql_user}:{settings.mysql_password}"
    f"@{settings.mysql_host}:{settings.mysql_port}/{settings.mysql_db}",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)

AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class SessionMetricsLog(Base):
    """End-of-session metrics checkpoint."""

    __tablename__ = "session_metrics_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), nullable=False)
    athlete_id: Mapped[str] = mapped_column(String(36), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ended_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    batches: Mapped[int] = mapped_column(Integer, default=0)
    metrics_json: Mapped[str] = mapped_column(Text, nullable=False)


class AlertLog(Base):
    """Every alert that left the dispatch pipeline."""

    __tablename__ = "alert_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    sensor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    dispatched_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    acknowledged: Mapped[bool | None] = mapped_column(Boolean, default=False)


class BaselineSnapshot(Base):
    """Baseline profile captured at each refresh."""

    __tablename__ = "baseline_snapshot"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sensor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    channels: Mapped[int] = mapped_column(Integer, nullable=False)
    mean_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    mean_vector: Mapped[str] = mapped_column(Text, nullable=False)
    variance_vector: Mapped[str] = mapped_column(Text, nullable=False)
