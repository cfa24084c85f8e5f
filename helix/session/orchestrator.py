"""
Session Orchestrator.

Facade over the scheduler pipeline and the only component with persisted
side effects:

    next_cycle:      ThreadScheduler -> PhraseSelector -> CyclePayload
    record_response: LatencyClassifier -> SpacedRepetitionTracker -> store

A cycle is committed when its response arrives (or when the next cycle is
requested without one, which counts as exposure only). Replays triggered by a
spike (repeat / breakdown) are extra presentations of the same unit: they are
scored and logged but neither rotate the helix nor move the Fibonacci
position.

Persistence conflicts are retried with exponential backoff; each attempt
re-reads the freshest snapshot and reapplies the pure cycle transition.
"""
from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from loguru import logger

from helix.adaptive.baseline import (
    BaselineCalibrator,
    CalibrationStatus,
    SessionSamples,
    TimingSample,
)
from helix.adaptive.latency import (
    Classification,
    LatencyClassifier,
    ResponseMetric,
    SessionLatencyTracker,
    SpikeEvent,
    SpikeResponse,
    normalize_latency,
)
from helix.content.graph import CourseGraph, Lego, Phrase
from helix.content.sources import ContentGraphSource
from helix.core.errors import (
    NoEligiblePhraseError,
    NoPendingCycleError,
    PersistenceConflictError,
    SessionNotStartedError,
)
from helix.core.learning_config import ConfigResolver, LearningConfig
from helix.db.store import ProgressSnapshot, ProgressStore, SessionSummary
from helix.learning.phrase_selector import CyclePhase, PhraseSelector, Selection
from helix.learning.spaced_repetition import LegoProgress, SpacedRepetitionTracker
from helix.learning.thread_scheduler import (
    ScheduleDecision,
    ThreadScheduler,
    deal_seeds,
)
from helix.session.pacing import CycleMode, compute_pause_ms, cycle_mode

# =============================================================================
# Payloads
# =============================================================================


@dataclass(frozen=True)
class CyclePayload:
    """What the presentation layer plays for one cycle."""

    learner_id: str
    course_code: str
    cycle_number: int
    thread_id: int
    seed_id: str
    lego_id: str
    phase: CyclePhase
    mode: CycleMode
    phrase_id: str
    known_text: str
    target_text: str
    known_audio: str | None
    target_audio_1: str | None
    target_audio_2: str | None  # None when pacing skips the second voice
    pause_ms: int  # 0 for listening cycles
    playback_speed: float


@dataclass(frozen=True)
class CourseComplete:
    """Terminal outcome: every thread is exhausted."""

    learner_id: str
    course_code: str
    cycles_completed: int


@dataclass(frozen=True)
class AdaptationResult:
    """Feedback for the presentation layer after a response."""

    lego_id: str
    phrase_id: str
    phase: CyclePhase
    triggered_spike: bool
    response: SpikeResponse
    normalized_latency: float | None
    threshold: float | None
    feedback: str | None
    rolling_average: float | None
    fibonacci_position: int
    skip_number: int
    is_retired: bool
    calibration_status: CalibrationStatus


@dataclass
class _PendingCycle:
    lego: Lego
    phrase: Phrase
    phase: CyclePhase
    mode: CycleMode
    cycle_number: int
    thread_id: int
    decision: ScheduleDecision | None = None  # None for replays
    selection: Selection | None = None

    @property
    def is_replay(self) -> bool:
        return self.decision is None


@dataclass
class _SessionContext:
    summary: SessionSummary
    graph: CourseGraph
    config: LearningConfig
    snapshot: ProgressSnapshot
    scheduler: ThreadScheduler
    selector: PhraseSelector
    tracker: SpacedRepetitionTracker
    classifier: LatencyClassifier
    latency: SessionLatencyTracker
    calibrator: BaselineCalibrator
    samples: SessionSamples = field(default_factory=SessionSamples)
    unavailable_threads: set[int] = field(default_factory=set)
    excluded_legos: set[str] = field(default_factory=set)
    replays: deque[_PendingCycle] = field(default_factory=deque)
    pending: _PendingCycle | None = None

    def note_error(self, message: str) -> None:
        if message not in self.summary.content_errors:
            self.summary.content_errors.append(message)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Orchestrator
# =============================================================================


class SessionOrchestrator:
    """
    Drives learner sessions, one cycle at a time.

    Usage:
        orchestrator = SessionOrchestrator(source, store)
        orchestrator.start_session("learner-1", "spa_for_eng")
        payload = orchestrator.next_cycle("learner-1", "spa_for_eng")
        result = orchestrator.record_response("learner-1", "spa_for_eng", 1450, 2100)
        summary = orchestrator.end_session("learner-1", "spa_for_eng")
    """

    def __init__(
        self,
        content_source: ContentGraphSource,
        store: ProgressStore,
        config_resolver: ConfigResolver | None = None,
        retry_attempts: int = 3,
        retry_backoff_ms: int = 50,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            content_source: Provides course graphs by code
            store: Progress persistence
            config_resolver: Global + per-course learning config (defaults if None)
            retry_attempts: Attempts per cycle write on persistence conflicts
            retry_backoff_ms: First backoff; doubles on each further attempt
            clock: Timestamp source for records
            sleep: Backoff sleep (injectable for tests)
        """
        self.content_source = content_source
        self.store = store
        self.config_resolver = config_resolver or ConfigResolver()
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff_ms = retry_backoff_ms
        self._clock = clock
        self._sleep = sleep
        self._sessions: dict[tuple[str, str], _SessionContext] = {}

    # ========================================
    # Session lifecycle
    # ========================================

    def start_session(self, learner_id: str, course_code: str) -> SessionSummary:
        """
        Open a session; resolves config once and holds it for the sitting.

        Raises:
            UnknownCourseError: no graph for course_code
        """
        key = (learner_id, course_code)
        if key in self._sessions:
            logger.warning(f"Session already open for {learner_id} in {course_code}")
            return self._sessions[key].summary

        graph = self.content_source.get_course_graph(course_code)
        config = self.config_resolver.resolve(course_code)

        calibrator = BaselineCalibrator(config.calibration)
        snapshot = self.store.load_snapshot(learner_id, course_code)
        snapshot = replace(snapshot, baseline=calibrator.with_defaults(snapshot.baseline))
        if snapshot.helix is None:
            snapshot = replace(snapshot, helix=deal_seeds(graph, config.helix.initial_seed_count))
            logger.info(f"Dealt {len(graph.seeds)} seeds across 3 threads for {learner_id}")

        started_at = self._clock()
        session_id = self.store.start_session(learner_id, course_code, started_at)
        summary = SessionSummary(
            session_id=session_id,
            learner_id=learner_id,
            course_code=course_code,
            started_at=started_at,
        )

        self._sessions[key] = _SessionContext(
            summary=summary,
            graph=graph,
            config=config,
            snapshot=snapshot,
            scheduler=ThreadScheduler(graph, config),
            selector=PhraseSelector(graph, config.pacing),
            tracker=SpacedRepetitionTracker(config.repetition),
            classifier=LatencyClassifier(config.spike),
            latency=SessionLatencyTracker(config.spike),
            calibrator=calibrator,
        )
        logger.info(f"Session {session_id} started: {learner_id} / {course_code}")
        return summary

    def end_session(self, learner_id: str, course_code: str) -> SessionSummary:
        """Close the session, folding its non-spike samples into the baseline."""
        ctx = self._context(learner_id, course_code)
        if ctx.pending is not None:
            self._commit(ctx, None, None)

        baseline = ctx.calibrator.fold_session(ctx.snapshot.baseline, ctx.samples)
        summary = ctx.summary
        summary.ended_at = self._clock()
        summary.final_rolling_average = ctx.latency.rolling_average

        self.store.end_session(summary, baseline)
        del self._sessions[(learner_id, course_code)]
        logger.info(
            f"Session {summary.session_id} ended: {summary.items_practiced} items, "
            f"{summary.spikes_detected} spikes"
        )
        return summary

    def session_summary(self, learner_id: str, course_code: str) -> SessionSummary:
        return self._context(learner_id, course_code).summary

    def _context(self, learner_id: str, course_code: str) -> _SessionContext:
        ctx = self._sessions.get((learner_id, course_code))
        if ctx is None:
            raise SessionNotStartedError(f"No open session for {learner_id} in {course_code}")
        return ctx

    # ========================================
    # Cycles
    # ========================================

    def next_cycle(self, learner_id: str, course_code: str) -> CyclePayload | CourseComplete:
        """
        Produce the next playable cycle.

        Content-integrity problems never escape: the offending LEGO is skipped
        for the rest of the session and the scheduler moves on.
        """
        ctx = self._context(learner_id, course_code)
        if ctx.pending is not None:
            logger.warning(f"Cycle {ctx.pending.cycle_number} left unanswered; counting as exposure")
            self._commit(ctx, None, None)

        if ctx.replays:
            ctx.pending = ctx.replays.popleft()
            return self._payload(ctx, ctx.pending)

        for _ in range(len(ctx.graph.legos) + 1):
            helix = ctx.snapshot.helix
            result = ctx.scheduler.next_unit(
                helix, ctx.snapshot.progress, ctx.unavailable_threads, ctx.excluded_legos
            )
            for thread_id, error in result.desynced_threads.items():
                ctx.unavailable_threads.add(thread_id)
                ctx.note_error(str(error))

            decision = result.decision
            if decision is None:
                return CourseComplete(learner_id, course_code, helix.cycle_count)

            lego = ctx.graph.lego(decision.lego_id)
            progress = ctx.snapshot.progress.get(lego.id) or ctx.tracker.start(
                lego.id, decision.thread_id
            )
            try:
                selection = ctx.selector.select(lego, progress, learner_id, helix.coverage)
            except NoEligiblePhraseError as e:
                logger.warning(f"Skipping {lego.id} for this session: {e}")
                ctx.note_error(str(e))
                ctx.excluded_legos.add(lego.id)
                ctx.snapshot = replace(ctx.snapshot, helix=ctx.scheduler.skip_new(helix, decision))
                continue

            for error in selection.skipped:
                ctx.note_error(str(error))

            ctx.pending = _PendingCycle(
                lego=lego,
                phrase=selection.phrase,
                phase=selection.phase,
                mode=cycle_mode(
                    helix.cycle_count,
                    self._introduced_seeds(ctx),
                    ctx.config.session_structure,
                ),
                cycle_number=helix.cycle_count,
                thread_id=decision.thread_id,
                decision=decision,
                selection=selection,
            )
            return self._payload(ctx, ctx.pending)

        logger.error(f"No playable unit found for {learner_id} in {course_code}")
        return CourseComplete(learner_id, course_code, ctx.snapshot.helix.cycle_count)

    def record_response(
        self,
        learner_id: str,
        course_code: str,
        latency_ms: float | None,
        duration_ms: float | None = None,
    ) -> AdaptationResult:
        """
        Score the learner's response to the pending cycle and persist it.

        Args:
            latency_ms: Time from end of prompt to speech onset (None = not timed)
            duration_ms: Length of the learner's utterance (None = not measured)

        Raises:
            NoPendingCycleError: no cycle is awaiting a response
            PersistenceConflictError: retries exhausted
        """
        ctx = self._context(learner_id, course_code)
        if ctx.pending is None:
            raise NoPendingCycleError(f"No cycle awaiting a response for {learner_id}")
        return self._commit(ctx, latency_ms, duration_ms)

    # ========================================
    # Internals
    # ========================================

    def _introduced_seeds(self, ctx: _SessionContext) -> int:
        seeds = set()
        for lego_id in ctx.snapshot.progress:
            lego = ctx.graph.get_lego(lego_id)
            if lego is not None:
                seeds.add(lego.seed_id)
        return len(seeds)

    def _payload(self, ctx: _SessionContext, pending: _PendingCycle) -> CyclePayload:
        pacing = ctx.config.pacing
        phrase = pending.phrase
        if pending.mode == CycleMode.PRODUCTION:
            pause_ms = compute_pause_ms(phrase.word_count, pacing, ctx.latency.take_pause_extension())
        else:
            pause_ms = 0

        return CyclePayload(
            learner_id=ctx.summary.learner_id,
            course_code=ctx.summary.course_code,
            cycle_number=pending.cycle_number,
            thread_id=pending.thread_id,
            seed_id=pending.lego.seed_id,
            lego_id=pending.lego.id,
            phase=pending.phase,
            mode=pending.mode,
            phrase_id=phrase.id,
            known_text=phrase.known_text,
            target_text=phrase.target_text,
            known_audio=phrase.audio.known,
            target_audio_1=phrase.audio.target_1,
            target_audio_2=None if pacing.skip_voice2 else phrase.audio.target_2,
            pause_ms=pause_ms,
            playback_speed=pacing.playback_speed,
        )

    def _classify(
        self, ctx: _SessionContext, pending: _PendingCycle, latency_ms: float | None
    ) -> Classification | None:
        if latency_ms is None or pending.mode != CycleMode.PRODUCTION:
            return None
        normalized = normalize_latency(
            latency_ms, pending.phrase.target_text, ctx.config.spike.min_phrase_length
        )
        return ctx.classifier.classify(
            normalized,
            ctx.snapshot.baseline,
            pending.lego.is_molecular,
            ctx.latency.in_cooldown,
            ctx.latency.alternate_index,
        )

    def _commit(
        self,
        ctx: _SessionContext,
        latency_ms: float | None,
        duration_ms: float | None,
    ) -> AdaptationResult:
        pending = ctx.pending
        learner_id = ctx.summary.learner_id
        course_code = ctx.summary.course_code
        now = self._clock()

        classification = self._classify(ctx, pending, latency_ms)
        spiked = classification is not None and classification.triggered_spike

        sample = None
        if classification is not None:
            delta = None
            target_ms = pending.phrase.audio.target_duration_ms
            if duration_ms is not None:
                delta = duration_ms - target_ms if target_ms is not None else duration_ms
            sample = TimingSample(classification.normalized_latency, delta)

        metrics: list[ResponseMetric] = []
        spikes: list[SpikeEvent] = []
        if latency_ms is not None:
            metrics.append(ResponseMetric(
                learner_id=learner_id,
                course_code=course_code,
                cycle_number=pending.cycle_number,
                thread_id=pending.thread_id,
                lego_id=pending.lego.id,
                phrase_id=pending.phrase.id,
                latency_ms=latency_ms,
                duration_ms=duration_ms,
                normalized_latency=classification.normalized_latency if classification else None,
                triggered_spike=spiked,
                recorded_at=now,
                session_id=ctx.summary.session_id,
            ))
        if spiked:
            spikes.append(SpikeEvent(
                learner_id=learner_id,
                course_code=course_code,
                lego_id=pending.lego.id,
                phrase_id=pending.phrase.id,
                normalized_latency=classification.normalized_latency,
                threshold=classification.threshold,
                response=classification.response,
                recorded_at=now,
                session_id=ctx.summary.session_id,
            ))
            logger.info(
                f"Spike on {pending.lego.id} ({classification.normalized_latency:.0f} > "
                f"{classification.threshold:.0f} ms/char): {classification.response.value}"
            )

        def transition(snapshot: ProgressSnapshot) -> tuple[ProgressSnapshot, list[LegoProgress]]:
            baseline = snapshot.baseline
            if sample is not None and not baseline.is_calibrated:
                baseline = ctx.calibrator.add_calibration_sample(baseline, sample)
            if pending.is_replay:
                return replace(snapshot, baseline=baseline), []

            changed = self._apply_outcome(ctx, snapshot, pending, answered=sample is not None, spiked=spiked)
            helix = snapshot.helix
            helix = replace(helix, coverage=helix.coverage.record(pending.phrase, helix.cycle_count))
            helix = ctx.scheduler.advance(helix, pending.decision)
            progress = {**snapshot.progress, changed.lego_id: changed}
            return replace(snapshot, helix=helix, progress=progress, baseline=baseline), [changed]

        baseline_was_calibrated = ctx.snapshot.baseline.is_calibrated
        self._save_with_retry(ctx, transition, metrics, spikes)
        ctx.pending = None

        if classification is not None:
            ctx.latency.observe(classification)
        if sample is not None and baseline_was_calibrated and not spiked:
            ctx.samples.add(sample)
        if not pending.is_replay:
            ctx.summary.items_practiced += 1
        if spiked:
            ctx.summary.spikes_detected += 1
            if not pending.is_replay:
                self._queue_replays(ctx, pending, classification.response)

        progress = ctx.snapshot.progress.get(pending.lego.id) or ctx.tracker.start(
            pending.lego.id, pending.thread_id
        )
        return AdaptationResult(
            lego_id=pending.lego.id,
            phrase_id=pending.phrase.id,
            phase=pending.phase,
            triggered_spike=spiked,
            response=classification.response if classification else SpikeResponse.NONE,
            normalized_latency=classification.normalized_latency if classification else None,
            threshold=classification.threshold if classification else None,
            feedback=ctx.latency.feedback(ctx.snapshot.baseline),
            rolling_average=ctx.latency.rolling_average,
            fibonacci_position=progress.fibonacci_position,
            skip_number=ctx.tracker.skip_number(progress),
            is_retired=progress.is_retired,
            calibration_status=ctx.snapshot.baseline.status,
        )

    def _apply_outcome(
        self,
        ctx: _SessionContext,
        snapshot: ProgressSnapshot,
        pending: _PendingCycle,
        answered: bool,
        spiked: bool,
    ) -> LegoProgress:
        """Pure Spaced-Repetition transition for one committed cycle."""
        tracker = ctx.tracker
        cycle = snapshot.helix.cycle_count
        progress = snapshot.progress.get(pending.lego.id) or tracker.start(
            pending.lego.id, pending.thread_id
        )

        if pending.phase in (CyclePhase.REVIEW, CyclePhase.RETIRED_REVIEW):
            drawn = pending.selection.progress
            progress = replace(
                progress, eternal_urn=drawn.eternal_urn, urn_generation=drawn.urn_generation
            )

        if pending.phase == CyclePhase.INTRODUCTION:
            return tracker.record_introduction_step(progress, pending.selection.step_count, cycle)
        if not answered:
            return tracker.record_exposure(progress)
        if spiked:
            return tracker.record_spike(progress, cycle)
        return tracker.record_success(progress, cycle)

    def _queue_replays(
        self, ctx: _SessionContext, pending: _PendingCycle, response: SpikeResponse
    ) -> None:
        if response == SpikeResponse.BREAKDOWN:
            phrases = ctx.selector.breakdown_sequence(pending.lego)
            phase = CyclePhase.BREAKDOWN
        else:
            phrases = [pending.phrase]
            phase = CyclePhase.REPEAT

        for phrase in phrases:
            ctx.replays.append(_PendingCycle(
                lego=pending.lego,
                phrase=phrase,
                phase=phase,
                mode=CycleMode.PRODUCTION,
                cycle_number=pending.cycle_number,
                thread_id=pending.thread_id,
            ))

    def _save_with_retry(
        self,
        ctx: _SessionContext,
        transition: Callable[[ProgressSnapshot], tuple[ProgressSnapshot, list[LegoProgress]]],
        metrics: list[ResponseMetric],
        spikes: list[SpikeEvent],
    ) -> None:
        snapshot = ctx.snapshot
        for attempt in range(self.retry_attempts):
            updated, changed = transition(snapshot)
            try:
                version = self.store.save_cycle(updated, changed, metrics, spikes)
            except PersistenceConflictError as e:
                if attempt == self.retry_attempts - 1:
                    logger.error(f"Giving up after {self.retry_attempts} attempts: {e}")
                    raise
                delay = self.retry_backoff_ms * (2 ** attempt)
                logger.warning(f"{e}; retrying in {delay}ms (attempt {attempt + 1}/{self.retry_attempts})")
                self._sleep(delay / 1000)
                snapshot = self.store.load_snapshot(snapshot.learner_id, snapshot.course_code)
                snapshot = replace(snapshot, baseline=ctx.calibrator.with_defaults(snapshot.baseline))
                if snapshot.helix is None:
                    snapshot = replace(snapshot, helix=ctx.snapshot.helix)
                continue
            ctx.snapshot = replace(updated, version=version)
            return
