"""
Progress Store interface.

Persists, per learner and course:
- LegoProgress rows (created on first exposure, never deleted)
- Helix state (three thread slots + cycle clock), carrying the row version
  used for optimistic concurrency
- Learner baseline (per learner)
- Append-only ResponseMetric / SpikeEvent records
- Session summaries

A cycle is written as one unit: helix state, changed progress rows, baseline
and the cycle's metrics commit together or not at all. A writer holding a
stale version gets PersistenceConflictError and must re-read.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from helix.adaptive.baseline import LearnerBaseline
from helix.adaptive.latency import ResponseMetric, SpikeEvent
from helix.learning.spaced_repetition import LegoProgress
from helix.learning.thread_scheduler import HelixState


@dataclass(frozen=True)
class ProgressSnapshot:
    """Everything the scheduler needs for one learner in one course."""

    learner_id: str
    course_code: str
    helix: HelixState | None  # None = learner has never started this course
    progress: dict[str, LegoProgress]
    baseline: LearnerBaseline
    version: int = 0  # 0 = no helix row written yet


@dataclass
class SessionSummary:
    """One sitting."""

    session_id: int
    learner_id: str
    course_code: str
    started_at: datetime
    ended_at: datetime | None = None
    items_practiced: int = 0
    spikes_detected: int = 0
    final_rolling_average: float | None = None
    content_errors: list[str] = field(default_factory=list)


class ProgressStore(ABC):
    """Abstract store; see SqlProgressStore and InMemoryProgressStore."""

    @abstractmethod
    def load_snapshot(self, learner_id: str, course_code: str) -> ProgressSnapshot:
        """Read the freshest state (an empty snapshot for a new learner)."""

    @abstractmethod
    def save_cycle(
        self,
        snapshot: ProgressSnapshot,
        changed: list[LegoProgress],
        metrics: list[ResponseMetric] | None = None,
        spikes: list[SpikeEvent] | None = None,
    ) -> int:
        """
        Write one cycle atomically.

        Args:
            snapshot: New state; snapshot.version is the version it was read at
            changed: Progress rows created or modified by the cycle
            metrics: Response records to append
            spikes: Spike records to append

        Returns:
            The new version

        Raises:
            PersistenceConflictError: stored version differs from snapshot.version
        """

    @abstractmethod
    def start_session(self, learner_id: str, course_code: str, started_at: datetime) -> int:
        """Open a session record and return its id."""

    @abstractmethod
    def end_session(self, summary: SessionSummary, baseline: LearnerBaseline) -> None:
        """Close a session and store the baseline folded at session end."""

    @abstractmethod
    def recent_metrics(
        self, learner_id: str, course_code: str, limit: int = 50
    ) -> list[ResponseMetric]:
        """Most recent response records, newest first."""

    @abstractmethod
    def list_sessions(self, learner_id: str, course_code: str) -> list[SessionSummary]:
        """Session history, oldest first."""
