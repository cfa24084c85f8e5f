"""
Learner Progress Models.

SQLAlchemy models for the session scheduler:
- Per-LEGO spaced repetition progress
- Helix (thread) state with its optimistic-lock version
- Learner baselines
- Append-only response metrics and spike events
- Session summaries
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class LegoProgressRow(Base):
    """
    Spaced repetition state per learner per LEGO.

    skip_number is derived from fibonacci_position and deliberately has no column.
    """

    __tablename__ = "lego_progress"

    learner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    course_code: Mapped[str] = mapped_column(String(64), primary_key=True)
    lego_id: Mapped[str] = mapped_column(String(32), primary_key=True)

    thread_id: Mapped[int] = mapped_column(Integer, nullable=False)
    fibonacci_position: Mapped[int] = mapped_column(Integer, default=0)
    reps_completed: Mapped[int] = mapped_column(Integer, default=0)
    is_retired: Mapped[bool] = mapped_column(Boolean, default=False)

    # Introduction
    introduction_played: Mapped[bool] = mapped_column(Boolean, default=False)
    introduction_index: Mapped[int] = mapped_column(Integer, default=0)
    introduction_complete: Mapped[bool] = mapped_column(Boolean, default=False)

    # Eternal review
    eternal_urn: Mapped[list] = mapped_column(JSON, default=list)
    urn_generation: Mapped[int] = mapped_column(Integer, default=0)

    last_practiced_cycle: Mapped[int | None] = mapped_column(Integer)
    exposure_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_lego_progress_thread", "learner_id", "course_code", "thread_id"),
    )

    def __repr__(self) -> str:
        return f"<LegoProgressRow {self.learner_id} {self.lego_id} pos={self.fibonacci_position}>"


class HelixStateRow(Base):
    """Thread state per learner per course, serialized as validated JSON."""

    __tablename__ = "helix_state"

    learner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    course_code: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    state: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class LearnerBaselineRow(Base):
    """Latency/duration statistics per learner."""

    __tablename__ = "learner_baselines"

    learner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), default="not_started")
    latency_mean: Mapped[float] = mapped_column(Float, default=0.0)
    latency_stddev: Mapped[float] = mapped_column(Float, default=0.0)
    duration_delta_mean: Mapped[float] = mapped_column(Float, default=0.0)
    duration_delta_stddev: Mapped[float] = mapped_column(Float, default=0.0)
    had_timing_data: Mapped[bool] = mapped_column(Boolean, default=False)
    sample_count: Mapped[int] = mapped_column(Integer, default=0)
    pending_latencies: Mapped[list] = mapped_column(JSON, default=list)
    pending_durations: Mapped[list] = mapped_column(JSON, default=list)
    calibrated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ResponseMetricRow(Base):
    """One learner response (append-only)."""

    __tablename__ = "response_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    course_code: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[int | None] = mapped_column(Integer)
    cycle_number: Mapped[int] = mapped_column(Integer, nullable=False)
    thread_id: Mapped[int] = mapped_column(Integer, nullable=False)
    lego_id: Mapped[str] = mapped_column(String(32), nullable=False)
    phrase_id: Mapped[str] = mapped_column(String(64), nullable=False)
    latency_ms: Mapped[float | None] = mapped_column(Float)
    duration_ms: Mapped[float | None] = mapped_column(Float)
    normalized_latency: Mapped[float | None] = mapped_column(Float)
    triggered_spike: Mapped[bool] = mapped_column(Boolean, default=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_response_metrics_learner", "learner_id", "course_code", "id"),
    )


class SpikeEventRow(Base):
    """One detected latency spike (append-only)."""

    __tablename__ = "spike_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    course_code: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[int | None] = mapped_column(Integer)
    lego_id: Mapped[str] = mapped_column(String(32), nullable=False)
    phrase_id: Mapped[str] = mapped_column(String(64), nullable=False)
    normalized_latency: Mapped[float] = mapped_column(Float, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    response: Mapped[str] = mapped_column(String(16), nullable=False)  # 'repeat', 'breakdown'
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LearningSessionRow(Base):
    """Session summary."""

    __tablename__ = "learning_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    course_code: Mapped[str] = mapped_column(String(64), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    items_practiced: Mapped[int] = mapped_column(Integer, default=0)
    spikes_detected: Mapped[int] = mapped_column(Integer, default=0)
    final_rolling_average: Mapped[float | None] = mapped_column(Float)
    content_errors: Mapped[list] = mapped_column(JSON, default=list)

    __table_args__ = (
        Index("idx_learning_sessions_learner", "learner_id", "course_code"),
    )
