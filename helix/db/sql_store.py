"""
SQLAlchemy-backed ProgressStore.

Each save_cycle is one transaction: a versioned UPDATE of the learner's
helix_state row (or its first INSERT), progress upserts, the baseline and the
cycle's metrics. A version mismatch aborts the whole transaction, so a
position can never be written without the rest of its cycle.
"""
from __future__ import annotations

from datetime import datetime

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from helix.adaptive.baseline import CalibrationStatus, LearnerBaseline
from helix.adaptive.latency import ResponseMetric, SpikeEvent
from helix.core.errors import HelixError, PersistenceConflictError
from helix.db.database import make_session_factory, session_scope
from helix.db.models import (
    HelixStateRow,
    LearnerBaselineRow,
    LearningSessionRow,
    LegoProgressRow,
    ResponseMetricRow,
    SpikeEventRow,
)
from helix.db.store import ProgressSnapshot, ProgressStore, SessionSummary
from helix.learning.spaced_repetition import LegoProgress
from helix.learning.thread_scheduler import HelixState

# =============================================================================
# Row <-> domain mapping
# =============================================================================


def _progress_from_row(row: LegoProgressRow) -> LegoProgress:
    return LegoProgress(
        lego_id=row.lego_id,
        thread_id=row.thread_id,
        fibonacci_position=row.fibonacci_position,
        reps_completed=row.reps_completed,
        is_retired=row.is_retired,
        introduction_played=row.introduction_played,
        introduction_index=row.introduction_index,
        introduction_complete=row.introduction_complete,
        eternal_urn=tuple(row.eternal_urn or ()),
        urn_generation=row.urn_generation,
        last_practiced_cycle=row.last_practiced_cycle,
        exposure_count=row.exposure_count,
    )


def _apply_progress(row: LegoProgressRow, progress: LegoProgress) -> None:
    row.thread_id = progress.thread_id
    row.fibonacci_position = progress.fibonacci_position
    row.reps_completed = progress.reps_completed
    row.is_retired = progress.is_retired
    row.introduction_played = progress.introduction_played
    row.introduction_index = progress.introduction_index
    row.introduction_complete = progress.introduction_complete
    row.eternal_urn = list(progress.eternal_urn)
    row.urn_generation = progress.urn_generation
    row.last_practiced_cycle = progress.last_practiced_cycle
    row.exposure_count = progress.exposure_count


def _baseline_from_row(row: LearnerBaselineRow) -> LearnerBaseline:
    return LearnerBaseline(
        learner_id=row.learner_id,
        status=CalibrationStatus(row.status),
        latency_mean=row.latency_mean,
        latency_stddev=row.latency_stddev,
        duration_delta_mean=row.duration_delta_mean,
        duration_delta_stddev=row.duration_delta_stddev,
        had_timing_data=row.had_timing_data,
        sample_count=row.sample_count,
        pending_latencies=tuple(row.pending_latencies or ()),
        pending_durations=tuple(row.pending_durations or ()),
        calibrated_at=row.calibrated_at,
    )


def _apply_baseline(row: LearnerBaselineRow, baseline: LearnerBaseline) -> None:
    row.status = baseline.status.value
    row.latency_mean = baseline.latency_mean
    row.latency_stddev = baseline.latency_stddev
    row.duration_delta_mean = baseline.duration_delta_mean
    row.duration_delta_stddev = baseline.duration_delta_stddev
    row.had_timing_data = baseline.had_timing_data
    row.sample_count = baseline.sample_count
    row.pending_latencies = list(baseline.pending_latencies)
    row.pending_durations = list(baseline.pending_durations)
    row.calibrated_at = baseline.calibrated_at


def _metric_from_row(row: ResponseMetricRow) -> ResponseMetric:
    return ResponseMetric(
        learner_id=row.learner_id,
        course_code=row.course_code,
        cycle_number=row.cycle_number,
        thread_id=row.thread_id,
        lego_id=row.lego_id,
        phrase_id=row.phrase_id,
        latency_ms=row.latency_ms,
        duration_ms=row.duration_ms,
        normalized_latency=row.normalized_latency,
        triggered_spike=row.triggered_spike,
        recorded_at=row.recorded_at,
        session_id=row.session_id,
    )


def _summary_from_row(row: LearningSessionRow) -> SessionSummary:
    return SessionSummary(
        session_id=row.id,
        learner_id=row.learner_id,
        course_code=row.course_code,
        started_at=row.started_at,
        ended_at=row.ended_at,
        items_practiced=row.items_practiced,
        spikes_detected=row.spikes_detected,
        final_rolling_average=row.final_rolling_average,
        content_errors=list(row.content_errors or ()),
    )


# =============================================================================
# Store
# =============================================================================


class SqlProgressStore(ProgressStore):
    """
    ProgressStore over the helix tables.

    Usage:
        store = SqlProgressStore(make_session_factory(engine))
        snapshot = store.load_snapshot("learner-1", "spa_for_eng")
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._factory = session_factory or make_session_factory()

    def load_snapshot(self, learner_id: str, course_code: str) -> ProgressSnapshot:
        with session_scope(self._factory) as session:
            helix_row = session.get(HelixStateRow, (learner_id, course_code))
            rows = session.scalars(
                select(LegoProgressRow).where(
                    LegoProgressRow.learner_id == learner_id,
                    LegoProgressRow.course_code == course_code,
                )
            ).all()
            baseline_row = session.get(LearnerBaselineRow, learner_id)

            return ProgressSnapshot(
                learner_id=learner_id,
                course_code=course_code,
                helix=HelixState.from_dict(helix_row.state) if helix_row else None,
                progress={row.lego_id: _progress_from_row(row) for row in rows},
                baseline=(
                    _baseline_from_row(baseline_row)
                    if baseline_row
                    else LearnerBaseline(learner_id=learner_id)
                ),
                version=helix_row.version if helix_row else 0,
            )

    def save_cycle(
        self,
        snapshot: ProgressSnapshot,
        changed: list[LegoProgress],
        metrics: list[ResponseMetric] | None = None,
        spikes: list[SpikeEvent] | None = None,
    ) -> int:
        new_version = snapshot.version + 1
        try:
            with session_scope(self._factory) as session:
                self._write_helix(session, snapshot, new_version)

                for item in changed:
                    key = (snapshot.learner_id, snapshot.course_code, item.lego_id)
                    row = session.get(LegoProgressRow, key)
                    if row is None:
                        row = LegoProgressRow(
                            learner_id=snapshot.learner_id,
                            course_code=snapshot.course_code,
                            lego_id=item.lego_id,
                        )
                        session.add(row)
                    _apply_progress(row, item)

                self._write_baseline(session, snapshot.baseline)

                for metric in metrics or []:
                    session.add(ResponseMetricRow(
                        learner_id=metric.learner_id,
                        course_code=metric.course_code,
                        session_id=metric.session_id,
                        cycle_number=metric.cycle_number,
                        thread_id=metric.thread_id,
                        lego_id=metric.lego_id,
                        phrase_id=metric.phrase_id,
                        latency_ms=metric.latency_ms,
                        duration_ms=metric.duration_ms,
                        normalized_latency=metric.normalized_latency,
                        triggered_spike=metric.triggered_spike,
                        recorded_at=metric.recorded_at,
                    ))
                for spike in spikes or []:
                    session.add(SpikeEventRow(
                        learner_id=spike.learner_id,
                        course_code=spike.course_code,
                        session_id=spike.session_id,
                        lego_id=spike.lego_id,
                        phrase_id=spike.phrase_id,
                        normalized_latency=spike.normalized_latency,
                        threshold=spike.threshold,
                        response=spike.response.value,
                        recorded_at=spike.recorded_at,
                    ))
        except IntegrityError as e:
            # Two first-writers raced on the helix_state insert
            raise PersistenceConflictError(
                snapshot.learner_id, snapshot.course_code, snapshot.version
            ) from e
        return new_version

    def _write_helix(self, session: Session, snapshot: ProgressSnapshot, new_version: int) -> None:
        state = snapshot.helix.to_dict() if snapshot.helix is not None else None

        if snapshot.version == 0:
            if state is None:
                return
            if session.get(HelixStateRow, (snapshot.learner_id, snapshot.course_code)) is not None:
                raise PersistenceConflictError(snapshot.learner_id, snapshot.course_code, 0)
            session.add(HelixStateRow(
                learner_id=snapshot.learner_id,
                course_code=snapshot.course_code,
                version=new_version,
                state=state,
            ))
            session.flush()
            return

        values = {"version": new_version}
        if state is not None:
            values["state"] = state
        result = session.execute(
            update(HelixStateRow)
            .where(
                HelixStateRow.learner_id == snapshot.learner_id,
                HelixStateRow.course_code == snapshot.course_code,
                HelixStateRow.version == snapshot.version,
            )
            .values(**values)
        )
        if result.rowcount == 0:
            raise PersistenceConflictError(
                snapshot.learner_id, snapshot.course_code, snapshot.version
            )

    def _write_baseline(self, session: Session, baseline: LearnerBaseline) -> None:
        row = session.get(LearnerBaselineRow, baseline.learner_id)
        if row is None:
            row = LearnerBaselineRow(learner_id=baseline.learner_id)
            session.add(row)
        _apply_baseline(row, baseline)

    def start_session(self, learner_id: str, course_code: str, started_at: datetime) -> int:
        with session_scope(self._factory) as session:
            row = LearningSessionRow(
                learner_id=learner_id,
                course_code=course_code,
                started_at=started_at,
                content_errors=[],
            )
            session.add(row)
            session.flush()
            logger.debug(f"Opened session {row.id} for {learner_id} in {course_code}")
            return row.id

    def end_session(self, summary: SessionSummary, baseline: LearnerBaseline) -> None:
        with session_scope(self._factory) as session:
            row = session.get(LearningSessionRow, summary.session_id)
            if row is None:
                raise HelixError(f"Unknown session {summary.session_id}")
            row.ended_at = summary.ended_at
            row.items_practiced = summary.items_practiced
            row.spikes_detected = summary.spikes_detected
            row.final_rolling_average = summary.final_rolling_average
            row.content_errors = list(summary.content_errors)
            self._write_baseline(session, baseline)

    def recent_metrics(
        self, learner_id: str, course_code: str, limit: int = 50
    ) -> list[ResponseMetric]:
        with session_scope(self._factory) as session:
            rows = session.scalars(
                select(ResponseMetricRow)
                .where(
                    ResponseMetricRow.learner_id == learner_id,
                    ResponseMetricRow.course_code == course_code,
                )
                .order_by(ResponseMetricRow.id.desc())
                .limit(limit)
            ).all()
            return [_metric_from_row(row) for row in rows]

    def list_sessions(self, learner_id: str, course_code: str) -> list[SessionSummary]:
        with session_scope(self._factory) as session:
            rows = session.scalars(
                select(LearningSessionRow)
                .where(
                    LearningSessionRow.learner_id == learner_id,
                    LearningSessionRow.course_code == course_code,
                )
                .order_by(LearningSessionRow.id)
            ).all()
            return [_summary_from_row(row) for row in rows]
