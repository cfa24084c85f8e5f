"""
Spaced-Repetition Tracker.

Per-LEGO state machine:

    Introducing -> Active(fibonacci_position) -> Retired

- Introducing: one sub-step per cycle until every introduction step has
  played, then Active at position 0.
- Active success: reps_completed += 1, position advances (capped).
- Active spike: position steps back (never below 0).
- Retired: reps exceeded the threshold at the cap. Retired LEGOs only come
  back for low-frequency review; a spike on that review returns them to
  rotation one step below the cap.

skip_number is always Fibonacci(position) and is computed, never stored.
Every transition returns a new LegoProgress; the tracker holds no state.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

from helix.core.learning_config import RepetitionConfig


class LegoState(str, Enum):
    INTRODUCING = "introducing"
    ACTIVE = "active"
    RETIRED = "retired"


@dataclass(frozen=True)
class LegoProgress:
    """Learner's progress on one LEGO (created on first exposure, never deleted)."""

    lego_id: str
    thread_id: int
    fibonacci_position: int = 0
    reps_completed: int = 0
    is_retired: bool = False
    introduction_played: bool = False
    introduction_index: int = 0
    introduction_complete: bool = False
    eternal_urn: tuple[str, ...] = ()
    urn_generation: int = 0
    last_practiced_cycle: int | None = None
    exposure_count: int = 0

    @property
    def state(self) -> LegoState:
        if self.is_retired:
            return LegoState.RETIRED
        if not self.introduction_complete:
            return LegoState.INTRODUCING
        return LegoState.ACTIVE


@dataclass
class RepetitionStats:
    """Counts by state, for progress reports."""

    introducing: int = 0
    active: int = 0
    retired: int = 0
    by_position: dict[int, int] = field(default_factory=dict)


class SpacedRepetitionTracker:
    """
    Pure Fibonacci-decay transitions over LegoProgress.

    Usage:
        tracker = SpacedRepetitionTracker(config.repetition)
        progress = tracker.start("S0001L01", thread_id=1)
        progress = tracker.record_introduction_step(progress, total_steps=2, cycle=0)
    """

    def __init__(self, config: RepetitionConfig | None = None):
        """
        Initialize tracker.

        Args:
            config: RepetitionConfig or None for defaults
        """
        self.config = config or RepetitionConfig()

    # ========================================
    # Derived values
    # ========================================

    def skip_number(self, progress: LegoProgress) -> int:
        """Intervening cycles (across all threads) before the LEGO is eligible again."""
        return self.config.fibonacci_sequence[progress.fibonacci_position]

    def cycles_until_due(self, progress: LegoProgress, cycle: int) -> int:
        """Zero or negative when due; negative values mean overdue."""
        if progress.last_practiced_cycle is None:
            return 0
        next_due = progress.last_practiced_cycle + self.skip_number(progress) + 1
        return next_due - cycle

    def is_due(self, progress: LegoProgress, cycle: int) -> bool:
        """Active LEGO whose skip window has elapsed."""
        if progress.state != LegoState.ACTIVE:
            return False
        return self.cycles_until_due(progress, cycle) <= 0

    def is_review_due(self, progress: LegoProgress, cycle: int) -> bool:
        """Retired LEGO whose low-frequency review gap has elapsed."""
        if not progress.is_retired:
            return False
        if progress.last_practiced_cycle is None:
            return True
        return cycle - progress.last_practiced_cycle >= self.config.retired_review_gap

    # ========================================
    # Transitions
    # ========================================

    def start(self, lego_id: str, thread_id: int) -> LegoProgress:
        """Fresh progress for a LEGO the learner has never seen."""
        if thread_id not in (1, 2, 3):
            raise ValueError(f"thread_id must be 1, 2 or 3, got {thread_id}")
        return LegoProgress(lego_id=lego_id, thread_id=thread_id)

    def record_introduction_step(
        self, progress: LegoProgress, total_steps: int, cycle: int
    ) -> LegoProgress:
        """
        Mark one introduction sub-step as played.

        Args:
            progress: Current progress (must still be introducing)
            total_steps: Number of introduction steps for this LEGO
            cycle: Helix cycle the step was played on

        Returns:
            Updated progress; Active at position 0 once all steps have played
        """
        if progress.introduction_complete:
            return progress

        index = progress.introduction_index + 1
        complete = index >= max(total_steps, 1)
        return replace(
            progress,
            introduction_played=True,
            introduction_index=index,
            introduction_complete=complete,
            fibonacci_position=0 if complete else progress.fibonacci_position,
            last_practiced_cycle=cycle,
            exposure_count=progress.exposure_count + 1,
        )

    def record_success(self, progress: LegoProgress, cycle: int) -> LegoProgress:
        """Successful production: advance one Fibonacci step, retire at the cap."""
        if progress.is_retired:
            return replace(
                progress,
                reps_completed=progress.reps_completed + 1,
                last_practiced_cycle=cycle,
                exposure_count=progress.exposure_count + 1,
            )

        reps = progress.reps_completed + 1
        position = min(progress.fibonacci_position + 1, self.config.fibonacci_cap)
        retired = position == self.config.fibonacci_cap and reps > self.config.retirement_reps
        return replace(
            progress,
            reps_completed=reps,
            fibonacci_position=position,
            is_retired=retired,
            last_practiced_cycle=cycle,
            exposure_count=progress.exposure_count + 1,
        )

    def record_spike(self, progress: LegoProgress, cycle: int) -> LegoProgress:
        """Spike or failure: step back one position; retired LEGOs re-enter rotation."""
        if progress.is_retired:
            position = max(0, self.config.fibonacci_cap - 1)
        else:
            position = max(0, progress.fibonacci_position - 1)
        return replace(
            progress,
            fibonacci_position=position,
            is_retired=False,
            last_practiced_cycle=cycle,
            exposure_count=progress.exposure_count + 1,
        )

    def record_exposure(self, progress: LegoProgress) -> LegoProgress:
        """Listening cycle or unanswered prompt: counted, schedule untouched."""
        return replace(progress, exposure_count=progress.exposure_count + 1)

    # ========================================
    # Reporting
    # ========================================

    def summarize(self, progress: list[LegoProgress]) -> RepetitionStats:
        stats = RepetitionStats()
        for item in progress:
            if item.state == LegoState.RETIRED:
                stats.retired += 1
            elif item.state == LegoState.INTRODUCING:
                stats.introducing += 1
            else:
                stats.active += 1
                stats.by_position[item.fibonacci_position] = (
                    stats.by_position.get(item.fibonacci_position, 0) + 1
                )
        return stats
