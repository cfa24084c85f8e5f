"""In-process ProgressStore with the same conflict semantics as the SQL store."""
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime

from helix.adaptive.baseline import LearnerBaseline
from helix.adaptive.latency import ResponseMetric, SpikeEvent
from helix.core.errors import HelixError, PersistenceConflictError
from helix.db.store import ProgressSnapshot, ProgressStore, SessionSummary
from helix.learning.spaced_repetition import LegoProgress
from helix.learning.thread_scheduler import HelixState


class InMemoryProgressStore(ProgressStore):
    """
    Dict-backed store for tests and ephemeral simulations.

    All records are frozen dataclasses, so handing them out shares nothing
    mutable; the lock makes each save all-or-nothing across threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._helix: dict[tuple[str, str], tuple[int, HelixState]] = {}
        self._progress: dict[tuple[str, str], dict[str, LegoProgress]] = {}
        self._baselines: dict[str, LearnerBaseline] = {}
        self._metrics: list[ResponseMetric] = []
        self._spikes: list[SpikeEvent] = []
        self._sessions: dict[int, SessionSummary] = {}

    @property
    def spikes(self) -> list[SpikeEvent]:
        return list(self._spikes)

    def load_snapshot(self, learner_id: str, course_code: str) -> ProgressSnapshot:
        key = (learner_id, course_code)
        with self._lock:
            version, helix = self._helix.get(key, (0, None))
            return ProgressSnapshot(
                learner_id=learner_id,
                course_code=course_code,
                helix=helix,
                progress=dict(self._progress.get(key, {})),
                baseline=self._baselines.get(learner_id, LearnerBaseline(learner_id=learner_id)),
                version=version,
            )

    def save_cycle(
        self,
        snapshot: ProgressSnapshot,
        changed: list[LegoProgress],
        metrics: list[ResponseMetric] | None = None,
        spikes: list[SpikeEvent] | None = None,
    ) -> int:
        key = (snapshot.learner_id, snapshot.course_code)
        with self._lock:
            stored_version, _ = self._helix.get(key, (0, None))
            if stored_version != snapshot.version:
                raise PersistenceConflictError(
                    snapshot.learner_id, snapshot.course_code, snapshot.version
                )

            new_version = stored_version + 1
            if snapshot.helix is not None:
                self._helix[key] = (new_version, snapshot.helix)
            rows = self._progress.setdefault(key, {})
            for item in changed:
                rows[item.lego_id] = item
            self._baselines[snapshot.learner_id] = snapshot.baseline
            self._metrics.extend(metrics or [])
            self._spikes.extend(spikes or [])
            return new_version

    def start_session(self, learner_id: str, course_code: str, started_at: datetime) -> int:
        with self._lock:
            session_id = len(self._sessions) + 1
            self._sessions[session_id] = SessionSummary(
                session_id=session_id,
                learner_id=learner_id,
                course_code=course_code,
                started_at=started_at,
            )
            return session_id

    def end_session(self, summary: SessionSummary, baseline: LearnerBaseline) -> None:
        with self._lock:
            if summary.session_id not in self._sessions:
                raise HelixError(f"Unknown session {summary.session_id}")
            self._sessions[summary.session_id] = replace(
                summary, content_errors=list(summary.content_errors)
            )
            self._baselines[baseline.learner_id] = baseline

    def recent_metrics(
        self, learner_id: str, course_code: str, limit: int = 50
    ) -> list[ResponseMetric]:
        with self._lock:
            mine = [
                m for m in self._metrics
                if m.learner_id == learner_id and m.course_code == course_code
            ]
        return list(reversed(mine))[:limit]

    def list_sessions(self, learner_id: str, course_code: str) -> list[SessionSummary]:
        with self._lock:
            return [
                s for s in self._sessions.values()
                if s.learner_id == learner_id and s.course_code == course_code
            ]
