"""
Thread Scheduler - the triple helix.

Three progression threads each own a queue of Seeds (card-dealt: seed i goes
to thread (i mod 3) + 1). Each cycle one thread is active; round robin
advances active_thread = (active_thread mod 3) + 1 and skips threads with
nothing available. When all three are exhausted the course is complete.

Within the active thread the unit is, in priority order:
1. a LEGO whose introduction is still in progress
2. a due review (most overdue first; retired reviews after active ones),
   thinned by spaced_rep_fraction while new material is waiting
3. the next new LEGO at the thread's cursor

The scheduler is a pure function of HelixState + progress; it returns a
decision and never mutates its inputs.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from helix.content.graph import CourseGraph
from helix.core.errors import ContentGraphDesyncError, ContentIntegrityError
from helix.core.learning_config import LearningConfig
from helix.learning.phrase_selector import CoverageLedger
from helix.learning.spaced_repetition import LegoProgress, LegoState, SpacedRepetitionTracker

THREAD_IDS = (1, 2, 3)


class UnitKind(str, Enum):
    NEW = "new"
    CONTINUE_INTRODUCTION = "continue_introduction"
    REVIEW = "review"
    RETIRED_REVIEW = "retired_review"
    FALLBACK_REVIEW = "fallback_review"


@dataclass(frozen=True)
class ThreadState:
    """One helix strand: its Seed queue and cursor."""

    thread_id: int
    seed_queue: tuple[str, ...] = ()
    current_seed_id: str | None = None
    current_lego_index: int = 0  # next new LEGO within current_seed_id
    credit: float = 0.0  # smooth weighted round robin

    def to_dict(self) -> dict:
        return {
            "thread_id": self.thread_id,
            "seed_queue": list(self.seed_queue),
            "current_seed_id": self.current_seed_id,
            "current_lego_index": self.current_lego_index,
            "credit": self.credit,
        }


@dataclass(frozen=True)
class HelixState:
    """Per learner, per course: three named thread slots and the cycle clock."""

    thread_1: ThreadState
    thread_2: ThreadState
    thread_3: ThreadState
    active_thread: int = 0  # 0 = no cycle run yet
    cycle_count: int = 0
    coverage: CoverageLedger = field(default_factory=CoverageLedger)

    def thread(self, thread_id: int) -> ThreadState:
        return {1: self.thread_1, 2: self.thread_2, 3: self.thread_3}[thread_id]

    @property
    def threads(self) -> tuple[ThreadState, ThreadState, ThreadState]:
        return (self.thread_1, self.thread_2, self.thread_3)

    def with_thread(self, thread: ThreadState) -> HelixState:
        return replace(self, **{f"thread_{thread.thread_id}": thread})

    def to_dict(self) -> dict:
        return {
            "active_thread": self.active_thread,
            "cycle_count": self.cycle_count,
            "thread_1": self.thread_1.to_dict(),
            "thread_2": self.thread_2.to_dict(),
            "thread_3": self.thread_3.to_dict(),
            "coverage": self.coverage.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> HelixState:
        """
        Validate and rebuild persisted helix state.

        Raises:
            ContentIntegrityError: stored state is malformed
        """
        try:
            payload = HelixStatePayload.model_validate(data)
        except ValidationError as e:
            raise ContentIntegrityError(f"Invalid helix state: {e}") from e
        return payload.to_state()


# =============================================================================
# Load/save validation
# =============================================================================


class ThreadStatePayload(BaseModel):
    thread_id: Literal[1, 2, 3]
    seed_queue: list[str] = Field(default_factory=list)
    current_seed_id: str | None = None
    current_lego_index: int = Field(default=0, ge=0)
    credit: float = 0.0

    @model_validator(mode="after")
    def _cursor_in_queue(self) -> ThreadStatePayload:
        if self.current_seed_id is not None and self.current_seed_id not in self.seed_queue:
            raise ValueError(f"cursor {self.current_seed_id} not in thread {self.thread_id} queue")
        return self


class HelixStatePayload(BaseModel):
    active_thread: int = Field(default=0, ge=0, le=3)
    cycle_count: int = Field(default=0, ge=0)
    thread_1: ThreadStatePayload
    thread_2: ThreadStatePayload
    thread_3: ThreadStatePayload
    coverage: dict = Field(default_factory=dict)

    @model_validator(mode="after")
    def _slots_match(self) -> HelixStatePayload:
        seen: set[str] = set()
        for slot, thread in zip(THREAD_IDS, (self.thread_1, self.thread_2, self.thread_3)):
            if thread.thread_id != slot:
                raise ValueError(f"thread_{slot} holds thread {thread.thread_id}")
            overlap = seen.intersection(thread.seed_queue)
            if overlap:
                raise ValueError(f"seeds in more than one thread: {sorted(overlap)}")
            seen.update(thread.seed_queue)
        return self

    def to_state(self) -> HelixState:
        threads = [
            ThreadState(
                thread_id=t.thread_id,
                seed_queue=tuple(t.seed_queue),
                current_seed_id=t.current_seed_id,
                current_lego_index=t.current_lego_index,
                credit=t.credit,
            )
            for t in (self.thread_1, self.thread_2, self.thread_3)
        ]
        return HelixState(
            *threads,
            active_thread=self.active_thread,
            cycle_count=self.cycle_count,
            coverage=CoverageLedger.from_dict(self.coverage),
        )


# =============================================================================
# Scheduling
# =============================================================================


@dataclass(frozen=True)
class ScheduleDecision:
    """Which thread, Seed and LEGO the next cycle works on."""

    thread_id: int
    seed_id: str
    lego_id: str
    lego_index: int
    kind: UnitKind


@dataclass
class ScheduleResult:
    """A decision (None = course complete) plus anything found broken on the way."""

    decision: ScheduleDecision | None
    desynced_threads: dict[int, ContentGraphDesyncError] = field(default_factory=dict)

    @property
    def course_complete(self) -> bool:
        return self.decision is None


def deal_seeds(graph: CourseGraph, initial_seed_count: int | None = None) -> HelixState:
    """Card-deal the course's Seeds across the three threads."""
    seeds = graph.seeds
    if initial_seed_count is not None:
        seeds = seeds[:initial_seed_count]

    queues: dict[int, list[str]] = {thread_id: [] for thread_id in THREAD_IDS}
    for i, seed in enumerate(seeds):
        queues[(i % 3) + 1].append(seed.id)

    threads = [
        ThreadState(
            thread_id=thread_id,
            seed_queue=tuple(queues[thread_id]),
            current_seed_id=queues[thread_id][0] if queues[thread_id] else None,
        )
        for thread_id in THREAD_IDS
    ]
    return HelixState(*threads)


def _bresenham(counter: int, fraction: float) -> bool:
    """True on round(fraction * N) of every N consecutive counter values."""
    if fraction >= 1.0:
        return True
    if fraction <= 0.0:
        return False
    return int((counter + 1) * fraction) > int(counter * fraction)


class ThreadScheduler:
    """
    Interleaves the three threads.

    Usage:
        scheduler = ThreadScheduler(graph, config)
        result = scheduler.next_unit(state, progress)
        if result.course_complete: ...
        state = scheduler.advance(state, result.decision)
    """

    def __init__(self, graph: CourseGraph, config: LearningConfig | None = None):
        self.graph = graph
        self.config = config or LearningConfig()
        self.tracker = SpacedRepetitionTracker(self.config.repetition)

    # ========================================
    # Thread order
    # ========================================

    def thread_order(self, state: HelixState) -> list[int]:
        """Candidate threads for this cycle, most preferred first."""
        if self.config.helix.interleave_policy == "weighted":
            weights = self.config.session_structure.thread_weights
            credits = {t.thread_id: t.credit + weights[t.thread_id - 1] for t in state.threads}
            return sorted(THREAD_IDS, key=lambda tid: (-credits[tid], tid))

        start = (state.active_thread % 3) + 1
        return [((start - 1 + offset) % 3) + 1 for offset in range(3)]

    # ========================================
    # Per-thread candidates
    # ========================================

    def _new_lego(
        self, thread: ThreadState, progress: dict[str, LegoProgress], excluded: set[str]
    ) -> ScheduleDecision | None:
        """
        Next unseen LEGO at or after the thread's cursor.

        Raises:
            ContentGraphDesyncError: the cursor or a later queued Seed is unknown
        """
        if thread.current_seed_id is None:
            return None

        queue = list(thread.seed_queue)
        lego_index = thread.current_lego_index
        for seed_id in queue[queue.index(thread.current_seed_id):]:
            seed = self.graph.get_seed(seed_id)
            if seed is None:
                raise ContentGraphDesyncError(seed_id, thread.thread_id)
            for index in range(lego_index, len(seed.lego_ids)):
                lego_id = seed.lego_ids[index]
                if lego_id in progress or lego_id in excluded:
                    continue
                return ScheduleDecision(thread.thread_id, seed_id, lego_id, index, UnitKind.NEW)
            lego_index = 0
        return None

    def _decision_for(self, item: LegoProgress, kind: UnitKind) -> ScheduleDecision:
        lego = self.graph.lego(item.lego_id)
        index = self.graph.get_seed(lego.seed_id).lego_ids.index(lego.id)
        return ScheduleDecision(item.thread_id, lego.seed_id, lego.id, index, kind)

    def _candidate(
        self,
        state: HelixState,
        thread: ThreadState,
        progress: dict[str, LegoProgress],
        excluded: set[str],
    ) -> ScheduleDecision | None:
        cycle = state.cycle_count
        mine = sorted(
            (
                p
                for p in progress.values()
                if p.thread_id == thread.thread_id
                and p.lego_id not in excluded
                and self.graph.get_lego(p.lego_id) is not None
            ),
            key=lambda p: self.graph.order_of(p.lego_id),
        )

        for item in mine:
            if item.state == LegoState.INTRODUCING:
                return self._decision_for(item, UnitKind.CONTINUE_INTRODUCTION)

        new = self._new_lego(thread, progress, excluded)

        due = [p for p in mine if self.tracker.is_due(p, cycle)]
        if due and (new is None or _bresenham(cycle, self.config.pacing.spaced_rep_fraction)):
            most_overdue = min(due, key=lambda p: self.tracker.cycles_until_due(p, cycle))
            return self._decision_for(most_overdue, UnitKind.REVIEW)

        retired_due = [p for p in mine if self.tracker.is_review_due(p, cycle)]
        if retired_due and new is None:
            oldest = min(retired_due, key=lambda p: p.last_practiced_cycle or -1)
            return self._decision_for(oldest, UnitKind.RETIRED_REVIEW)

        return new

    # ========================================
    # Public API
    # ========================================

    def next_unit(
        self,
        state: HelixState,
        progress: dict[str, LegoProgress],
        unavailable: set[int] | None = None,
        excluded: set[str] | None = None,
    ) -> ScheduleResult:
        """
        Decide the unit for the next cycle.

        Args:
            state: Current helix state
            progress: LegoProgress by lego_id
            unavailable: Threads already known to be desynced this session
            excluded: LEGOs skipped for the rest of this session

        Returns:
            ScheduleResult; decision is None when the course is complete
        """
        unavailable = set(unavailable or ())
        excluded = set(excluded or ())
        result = ScheduleResult(decision=None)

        for thread_id in self.thread_order(state):
            if thread_id in unavailable:
                continue
            try:
                decision = self._candidate(state, state.thread(thread_id), progress, excluded)
            except ContentGraphDesyncError as e:
                logger.error(f"Content graph desync: {e}")
                result.desynced_threads[thread_id] = e
                unavailable.add(thread_id)
                continue
            if decision is not None:
                result.decision = decision
                logger.debug(
                    f"Cycle {state.cycle_count}: thread {thread_id} -> {decision.lego_id} ({decision.kind.value})"
                )
                return result

        result.decision = self._fallback(progress, state.cycle_count, unavailable, excluded)
        if result.decision is None:
            logger.info("All threads exhausted: course complete")
        return result

    def _fallback(
        self,
        progress: dict[str, LegoProgress],
        cycle: int,
        unavailable: set[int],
        excluded: set[str],
    ) -> ScheduleDecision | None:
        """Nothing is due anywhere: practise the soonest-due active LEGO early."""
        active = [
            p
            for p in progress.values()
            if p.state == LegoState.ACTIVE
            and p.thread_id not in unavailable
            and p.lego_id not in excluded
            and self.graph.get_lego(p.lego_id) is not None
        ]
        if not active:
            return None
        soonest = min(
            active,
            key=lambda p: (self.tracker.cycles_until_due(p, cycle), self.graph.order_of(p.lego_id)),
        )
        return self._decision_for(soonest, UnitKind.FALLBACK_REVIEW)

    def advance(self, state: HelixState, decision: ScheduleDecision) -> HelixState:
        """
        Apply a decision to the helix: rotate the active thread, tick the cycle
        clock and, for a new LEGO, move the thread's cursor past it.
        """
        thread = state.thread(decision.thread_id)
        if decision.kind == UnitKind.NEW:
            thread = self._move_cursor(thread, decision)

        if self.config.helix.interleave_policy == "weighted":
            state = self._charge_credits(state, decision.thread_id)
            thread = replace(thread, credit=state.thread(decision.thread_id).credit)

        state = state.with_thread(thread)
        return replace(state, active_thread=decision.thread_id, cycle_count=state.cycle_count + 1)

    def skip_new(self, state: HelixState, decision: ScheduleDecision) -> HelixState:
        """Move the cursor past an unplayable new LEGO without spending a cycle."""
        if decision.kind != UnitKind.NEW:
            return state
        return state.with_thread(self._move_cursor(state.thread(decision.thread_id), decision))

    def _move_cursor(self, thread: ThreadState, decision: ScheduleDecision) -> ThreadState:
        queue = list(thread.seed_queue)
        if thread.current_seed_id is None or decision.seed_id not in queue:
            return thread
        cursor = (queue.index(thread.current_seed_id), thread.current_lego_index)
        if cursor > (queue.index(decision.seed_id), decision.lego_index):
            # Already past it (state re-read after a concurrent write)
            return thread

        seed = self.graph.get_seed(decision.seed_id)
        if seed is not None and decision.lego_index + 1 < len(seed.lego_ids):
            return replace(
                thread, current_seed_id=decision.seed_id, current_lego_index=decision.lego_index + 1
            )

        position = queue.index(decision.seed_id) + 1
        next_seed = queue[position] if position < len(queue) else None
        return replace(thread, current_seed_id=next_seed, current_lego_index=0)

    def _charge_credits(self, state: HelixState, chosen: int) -> HelixState:
        weights = self.config.session_structure.thread_weights
        total = sum(weights)
        for thread in state.threads:
            credit = thread.credit + weights[thread.thread_id - 1]
            if thread.thread_id == chosen:
                credit -= total
            state = state.with_thread(replace(thread, credit=credit))
        return state
