"""SQLAlchemy models for usage accounting and generation records."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tripweaver.db.base import Base


class UsageCounter(Base):
    """Per-user, per-usage-type counter for one accounting window."""

    __tablename__ = "usage_counters"

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    usage_type: Mapped[str] = mapped_column(String(50), nullable=False)
    period_type: Mapped[str] = mapped_column(String(20), nullable=False)
    period_start: Mapped[str] = mapped_column(String(10), nullable=False)
    period_end: Mapped[datetime] = mapped_column(nullable=False, index=True)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    usage_limit: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "usage_type", "period_type", "period_start",
            name="uq_usage_counter_window",
        ),
    )


class GenerationRecord(Base):
    """A persisted itinerary generation."""

    __tablename__ = "generation_records"

    request_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    days: Mapped[int] = mapped_column(Integer, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    quality_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    fallback_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    providers_used: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    total_latency_ms: Mapped[float] = mapped_column(Float, nullable=False)
    params_json: Mapped[str] = mapped_column(Text, nullable=False)
    itinerary_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    report_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_generation_records_user_created", "user_id", "created_at"),
    )
