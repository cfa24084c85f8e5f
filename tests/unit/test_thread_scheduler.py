"""
Unit tests for ThreadScheduler (triple helix).

Tests:
- Card-deal distribution
- Round-robin rotation and balance
- Priority inside a thread (introduction, due review, new)
- Exhaustion, course completion and desync handling
- Helix state validation on load
"""

from dataclasses import replace

import pytest

from builders import make_graph, make_lego
from helix.core.errors import ContentGraphDesyncError, ContentIntegrityError
from helix.core.learning_config import LearningConfig, merge_config
from helix.learning.spaced_repetition import SpacedRepetitionTracker
from helix.learning.thread_scheduler import (
    HelixState,
    ThreadScheduler,
    UnitKind,
    deal_seeds,
)


def _run(scheduler, state, progress, cycles):
    """Drive the scheduler, completing introductions and succeeding every review."""
    tracker = scheduler.tracker
    visits = []
    for _ in range(cycles):
        decision = scheduler.next_unit(state, progress).decision
        if decision is None:
            break
        visits.append(decision)
        cycle = state.cycle_count
        item = progress.get(decision.lego_id) or tracker.start(decision.lego_id, decision.thread_id)
        if item.introduction_complete:
            item = tracker.record_success(item, cycle)
        else:
            item = tracker.record_introduction_step(item, 1, cycle)
        progress[item.lego_id] = item
        state = scheduler.advance(state, decision)
    return state, progress, visits


class TestDealSeeds:
    """Seed i goes to thread (i mod 3) + 1."""

    def test_card_deal(self, single_lego_graph):
        state = deal_seeds(single_lego_graph)
        assert state.thread_1.seed_queue[:3] == ("S0001", "S0004", "S0007")
        assert state.thread_2.seed_queue[:2] == ("S0002", "S0005")
        assert state.thread_3.seed_queue[:2] == ("S0003", "S0006")
        assert state.thread_1.current_seed_id == "S0001"
        assert state.active_thread == 0

    def test_initial_seed_count_limits_deal(self, single_lego_graph):
        state = deal_seeds(single_lego_graph, initial_seed_count=4)
        assert state.thread_1.seed_queue == ("S0001", "S0004")
        assert state.thread_2.seed_queue == ("S0002",)
        assert state.thread_3.seed_queue == ("S0003",)


class TestRoundRobin:
    """active_thread = (active_thread mod 3) + 1."""

    def test_first_cycle_is_thread_one_first_lego(self, single_lego_graph):
        scheduler = ThreadScheduler(single_lego_graph)
        decision = scheduler.next_unit(deal_seeds(single_lego_graph), {}).decision
        assert decision.thread_id == 1
        assert decision.lego_id == "S0001L01"
        assert decision.kind == UnitKind.NEW

    def test_rotation_order(self, single_lego_graph):
        scheduler = ThreadScheduler(single_lego_graph)
        _, _, visits = _run(scheduler, deal_seeds(single_lego_graph), {}, 7)
        assert [v.thread_id for v in visits] == [1, 2, 3, 1, 2, 3, 1]

    def test_thirty_cycles_ten_each(self, single_lego_graph):
        scheduler = ThreadScheduler(single_lego_graph)
        _, _, visits = _run(scheduler, deal_seeds(single_lego_graph), {}, 30)
        counts = {t: sum(1 for v in visits if v.thread_id == t) for t in (1, 2, 3)}
        assert counts == {1: 10, 2: 10, 3: 10}

    def test_advance_rotates_and_ticks(self, single_lego_graph):
        scheduler = ThreadScheduler(single_lego_graph)
        state = deal_seeds(single_lego_graph)
        decision = scheduler.next_unit(state, {}).decision
        state = scheduler.advance(state, decision)
        assert state.active_thread == 1
        assert state.cycle_count == 1
        assert state.thread_1.current_seed_id == "S0004"

    def test_exhausted_thread_skipped(self):
        graph = make_graph([make_lego(1), make_lego(2)], [])
        scheduler = ThreadScheduler(graph)
        state = deal_seeds(graph)
        assert state.thread_3.seed_queue == ()

        _, _, visits = _run(scheduler, state, {}, 2)
        assert [v.thread_id for v in visits] == [1, 2]


class TestThreadPriority:
    """Introduction in progress, then due review, then new material."""

    def test_unfinished_introduction_continues(self, single_lego_graph):
        scheduler = ThreadScheduler(single_lego_graph)
        tracker = SpacedRepetitionTracker()
        state = replace(deal_seeds(single_lego_graph), active_thread=3, cycle_count=3)
        started = tracker.record_introduction_step(tracker.start("S0001L01", 1), 3, 0)
        state = state.with_thread(replace(state.thread_1, current_seed_id="S0004"))

        decision = scheduler.next_unit(state, {"S0001L01": started}).decision
        assert decision.lego_id == "S0001L01"
        assert decision.kind == UnitKind.CONTINUE_INTRODUCTION

    def test_due_review_before_new(self, single_lego_graph):
        scheduler = ThreadScheduler(single_lego_graph)
        tracker = SpacedRepetitionTracker()
        active = tracker.record_introduction_step(tracker.start("S0001L01", 1), 1, 0)
        state = deal_seeds(single_lego_graph)
        state = replace(state, active_thread=3, cycle_count=3)
        state = state.with_thread(replace(state.thread_1, current_seed_id="S0004"))

        decision = scheduler.next_unit(state, {"S0001L01": active}).decision
        assert decision.kind == UnitKind.REVIEW
        assert decision.lego_id == "S0001L01"

    def test_spaced_rep_fraction_zero_prefers_new(self, single_lego_graph):
        config = merge_config(LearningConfig(), {"pacing": {"spaced_rep_fraction": 0.0}})
        scheduler = ThreadScheduler(single_lego_graph, config)
        tracker = SpacedRepetitionTracker()
        active = tracker.record_introduction_step(tracker.start("S0001L01", 1), 1, 0)
        state = replace(deal_seeds(single_lego_graph), active_thread=3, cycle_count=3)
        state = state.with_thread(replace(state.thread_1, current_seed_id="S0004"))

        decision = scheduler.next_unit(state, {"S0001L01": active}).decision
        assert decision.kind == UnitKind.NEW
        assert decision.lego_id == "S0004L01"


class TestCompletion:
    """All threads exhausted -> course complete."""

    def test_fallback_when_nothing_due(self):
        graph = make_graph([make_lego(1)], [])
        scheduler = ThreadScheduler(graph)
        tracker = SpacedRepetitionTracker()
        item = tracker.record_introduction_step(tracker.start("S0001L01", 1), 1, 0)
        item = replace(item, fibonacci_position=5, last_practiced_cycle=0)
        state = replace(deal_seeds(graph), cycle_count=1)
        state = state.with_thread(replace(state.thread_1, current_seed_id=None))

        result = scheduler.next_unit(state, {"S0001L01": item})
        assert result.decision.kind == UnitKind.FALLBACK_REVIEW
        assert result.course_complete is False

    def test_all_retired_is_complete(self):
        graph = make_graph([make_lego(1)], [])
        scheduler = ThreadScheduler(graph)
        tracker = SpacedRepetitionTracker()
        item = tracker.record_introduction_step(tracker.start("S0001L01", 1), 1, 0)
        item = replace(item, is_retired=True, last_practiced_cycle=5)
        state = replace(deal_seeds(graph), cycle_count=6)
        state = state.with_thread(replace(state.thread_1, current_seed_id=None))

        result = scheduler.next_unit(state, {"S0001L01": item})
        assert result.course_complete is True

    def test_retired_review_when_gap_elapsed(self):
        graph = make_graph([make_lego(1)], [])
        scheduler = ThreadScheduler(graph)
        tracker = SpacedRepetitionTracker()
        item = tracker.record_introduction_step(tracker.start("S0001L01", 1), 1, 0)
        item = replace(item, is_retired=True, last_practiced_cycle=5)
        state = replace(deal_seeds(graph), cycle_count=60)
        state = state.with_thread(replace(state.thread_1, current_seed_id=None))

        decision = scheduler.next_unit(state, {"S0001L01": item}).decision
        assert decision.kind == UnitKind.RETIRED_REVIEW

    def test_course_runs_to_completion(self):
        graph = make_graph([make_lego(n) for n in range(1, 4)], [])
        config = merge_config(LearningConfig(), {"repetition": {"retirement_reps": 0, "fibonacci_cap": 1}})
        scheduler = ThreadScheduler(graph, config)
        state, progress, visits = _run(scheduler, deal_seeds(graph), {}, 50)

        assert all(p.is_retired for p in progress.values())
        assert scheduler.next_unit(state, progress).course_complete is True
        assert len(visits) == 6


class TestDesync:
    """A queue referencing a missing Seed disables that thread."""

    def test_unknown_seed_reported_and_skipped(self, single_lego_graph):
        scheduler = ThreadScheduler(single_lego_graph)
        state = deal_seeds(single_lego_graph)
        broken = replace(state.thread_1, seed_queue=("S0999",) + state.thread_1.seed_queue, current_seed_id="S0999")
        state = state.with_thread(broken)

        result = scheduler.next_unit(state, {})
        assert result.decision.thread_id == 2
        assert isinstance(result.desynced_threads[1], ContentGraphDesyncError)
        assert result.desynced_threads[1].seed_id == "S0999"

    def test_unavailable_threads_not_retried(self, single_lego_graph):
        scheduler = ThreadScheduler(single_lego_graph)
        result = scheduler.next_unit(deal_seeds(single_lego_graph), {}, unavailable={1})
        assert result.decision.thread_id == 2
        assert result.desynced_threads == {}


class TestWeighted:
    """Smooth weighted round robin over session_structure.thread_weights."""

    def test_weights_respected(self, single_lego_graph):
        config = merge_config(
            LearningConfig(),
            {
                "helix": {"interleave_policy": "weighted"},
                "session_structure": {"thread_weights": [2.0, 1.0, 1.0]},
            },
        )
        scheduler = ThreadScheduler(single_lego_graph, config)
        _, _, visits = _run(scheduler, deal_seeds(single_lego_graph), {}, 12)
        counts = {t: sum(1 for v in visits if v.thread_id == t) for t in (1, 2, 3)}
        assert counts == {1: 6, 2: 3, 3: 3}


class TestHelixStateValidation:
    """State is validated on load."""

    def test_round_trip(self, single_lego_graph):
        state = deal_seeds(single_lego_graph)
        assert HelixState.from_dict(state.to_dict()) == state

    def test_slot_mismatch_rejected(self, single_lego_graph):
        data = deal_seeds(single_lego_graph).to_dict()
        data["thread_2"]["thread_id"] = 3
        with pytest.raises(ContentIntegrityError):
            HelixState.from_dict(data)

    def test_seed_in_two_threads_rejected(self, single_lego_graph):
        data = deal_seeds(single_lego_graph).to_dict()
        data["thread_2"]["seed_queue"].append("S0001")
        with pytest.raises(ContentIntegrityError):
            HelixState.from_dict(data)

    def test_cursor_outside_queue_rejected(self, single_lego_graph):
        data = deal_seeds(single_lego_graph).to_dict()
        data["thread_1"]["current_seed_id"] = "S0002"
        with pytest.raises(ContentIntegrityError):
            HelixState.from_dict(data)
