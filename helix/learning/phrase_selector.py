"""
Phrase Selector.

Chooses the concrete phrase for a LEGO in its current phase:

- introduction: the LEGO's component phrases in authoring order (a LEGO with
  no component phrases is introduced by presenting itself)
- debut: build-up practice phrases, shortest first, one per successful cycle
- review: draws from the learner's eternal urn without replacement, biased
  toward phrases whose connected LEGOs and LEGO position were used least
  recently

Every phrase handed out passes the basket constraint and has its audio.
Phrases failing either check are skipped and logged for the content
pipeline; selection never fails open.
"""
from __future__ import annotations

import hashlib
import math
import random
from dataclasses import dataclass, field, replace
from enum import Enum

from loguru import logger

from helix.content.basket import check_playable
from helix.content.graph import CourseGraph, Lego, Phrase, PhraseRole
from helix.core.errors import ContentIntegrityError, NoEligiblePhraseError
from helix.core.learning_config import PacingConfig
from helix.learning.spaced_repetition import LegoProgress


class CyclePhase(str, Enum):
    INTRODUCTION = "introduction"
    DEBUT = "debut"
    REVIEW = "review"
    RETIRED_REVIEW = "retired_review"
    REPEAT = "repeat"
    BREAKDOWN = "breakdown"


@dataclass
class CoverageLedger:
    """
    Last cycle each connection / LEGO position was practiced by the learner.

    connections: connected LEGO id -> cycle
    positions: "<lego_id>:<start|middle|end>" -> cycle
    """

    connections: dict[str, int] = field(default_factory=dict)
    positions: dict[str, int] = field(default_factory=dict)

    def score(self, phrase: Phrase) -> int:
        """Most recent use of any of the phrase's features (-1 = never used)."""
        cycles = [
            self.connections.get(lego_id, -1)
            for lego_id in phrase.connected_lego_ids
            if lego_id != phrase.lego_id
        ]
        if phrase.lego_position is not None:
            cycles.append(self.positions.get(self._position_key(phrase), -1))
        return max(cycles, default=-1)

    def record(self, phrase: Phrase, cycle: int) -> CoverageLedger:
        connections = dict(self.connections)
        for lego_id in phrase.connected_lego_ids:
            if lego_id != phrase.lego_id:
                connections[lego_id] = cycle
        positions = dict(self.positions)
        if phrase.lego_position is not None:
            positions[self._position_key(phrase)] = cycle
        return CoverageLedger(connections=connections, positions=positions)

    @staticmethod
    def _position_key(phrase: Phrase) -> str:
        return f"{phrase.lego_id}:{phrase.lego_position.value}"

    def to_dict(self) -> dict:
        return {"connections": dict(self.connections), "positions": dict(self.positions)}

    @classmethod
    def from_dict(cls, data: dict | None) -> CoverageLedger:
        data = data or {}
        return cls(
            connections={k: int(v) for k, v in data.get("connections", {}).items()},
            positions={k: int(v) for k, v in data.get("positions", {}).items()},
        )


@dataclass(frozen=True)
class Selection:
    """Outcome of one selection: the phrase plus the progress it implies."""

    phase: CyclePhase
    phrase: Phrase
    progress: LegoProgress  # urn already advanced for review draws
    step_count: int = 1  # introduction steps, for the tracker
    skipped: tuple[ContentIntegrityError, ...] = ()


def urn_seed(learner_id: str, lego_id: str, generation: int) -> int:
    """Stable shuffle seed for one urn generation."""
    digest = hashlib.sha256(f"{learner_id}:{lego_id}:{generation}".encode()).hexdigest()
    return int(digest[:16], 16)


class PhraseSelector:
    """
    Selects phrases for a LEGO against one course graph.

    Usage:
        selector = PhraseSelector(graph, config.pacing)
        selection = selector.select(lego, progress, learner_id, coverage)
    """

    def __init__(self, graph: CourseGraph, pacing: PacingConfig | None = None):
        self.graph = graph
        self.pacing = pacing or PacingConfig()

    # ========================================
    # Candidate sets
    # ========================================

    def _playable(self, phrases: list[Phrase]) -> tuple[list[Phrase], list[ContentIntegrityError]]:
        ok: list[Phrase] = []
        errors: list[ContentIntegrityError] = []
        for phrase in phrases:
            try:
                check_playable(phrase, self.graph, require_voice2=not self.pacing.skip_voice2)
            except ContentIntegrityError as e:
                logger.error(f"Content integrity: {e} (lego={phrase.lego_id}, phrase={phrase.id})")
                errors.append(e)
                continue
            ok.append(phrase)
        return ok, errors

    def introduction_steps(self, lego: Lego) -> tuple[list[Phrase], list[ContentIntegrityError]]:
        """Component phrases in fixed order, or the LEGO itself when it has none."""
        components = self.graph.phrases_for(lego.id, PhraseRole.COMPONENT)
        if not components:
            return self._playable([lego.as_phrase()])
        return self._playable(components)

    def debut_sequence(self, lego: Lego) -> tuple[list[Phrase], list[ContentIntegrityError]]:
        """Build-up phrases by ascending length, truncated by debut_phrases_fraction."""
        practice = sorted(
            self.graph.phrases_for(lego.id, PhraseRole.PRACTICE),
            key=lambda p: (p.length_key, p.position, p.id),
        )
        playable, errors = self._playable(practice)
        keep = math.ceil(len(playable) * self.pacing.debut_phrases_fraction)
        return playable[:keep], errors

    def eternal_pool(self, lego: Lego) -> tuple[list[Phrase], list[ContentIntegrityError]]:
        """
        Review candidates: eternal-eligible phrases, falling back to practice
        phrases and finally to the LEGO itself.
        """
        errors: list[ContentIntegrityError] = []
        for role in (PhraseRole.ETERNAL_ELIGIBLE, PhraseRole.PRACTICE):
            pool, role_errors = self._playable(self.graph.phrases_for(lego.id, role))
            errors.extend(role_errors)
            if pool:
                return pool, errors
        pool, self_errors = self._playable([lego.as_phrase()])
        return pool, errors + self_errors

    # ========================================
    # Selection
    # ========================================

    def select(
        self,
        lego: Lego,
        progress: LegoProgress,
        learner_id: str,
        coverage: CoverageLedger,
    ) -> Selection:
        """
        Pick the phrase for the LEGO's current phase.

        Raises:
            NoEligiblePhraseError: nothing playable survives for this phase
        """
        if not progress.introduction_complete:
            steps, errors = self.introduction_steps(lego)
            if not steps:
                raise NoEligiblePhraseError(
                    f"No playable introduction step for {lego.id}", lego_id=lego.id
                )
            index = min(progress.introduction_index, len(steps) - 1)
            return Selection(
                CyclePhase.INTRODUCTION, steps[index], progress, len(steps), tuple(errors)
            )

        if not progress.is_retired:
            debut, errors = self.debut_sequence(lego)
            if progress.reps_completed < len(debut):
                return Selection(
                    CyclePhase.DEBUT, debut[progress.reps_completed], progress, skipped=tuple(errors)
                )
        else:
            errors = []

        phrase, drawn, urn_errors = self.draw_eternal(lego, progress, learner_id, coverage)
        phase = CyclePhase.RETIRED_REVIEW if progress.is_retired else CyclePhase.REVIEW
        return Selection(phase, phrase, drawn, skipped=tuple(errors) + tuple(urn_errors))

    def draw_eternal(
        self,
        lego: Lego,
        progress: LegoProgress,
        learner_id: str,
        coverage: CoverageLedger,
    ) -> tuple[Phrase, LegoProgress, list[ContentIntegrityError]]:
        """
        Draw one phrase from the eternal urn without replacement.

        An empty urn is refilled with the full eligible set in a shuffle seeded
        by (learner, LEGO, urn generation). Among the remaining ids the phrase
        with the least recently used coverage wins; ties go to urn order.

        Raises:
            NoEligiblePhraseError: no review candidate is playable
        """
        pool, errors = self.eternal_pool(lego)
        if not pool:
            raise NoEligiblePhraseError(f"No playable review phrase for {lego.id}", lego_id=lego.id)

        by_id = {phrase.id: phrase for phrase in pool}
        urn = [phrase_id for phrase_id in progress.eternal_urn if phrase_id in by_id]
        generation = progress.urn_generation

        if not urn:
            urn = sorted(by_id)
            random.Random(urn_seed(learner_id, lego.id, generation)).shuffle(urn)
            generation += 1
            logger.debug(f"Refilled eternal urn for {lego.id} ({len(urn)} phrases, gen {generation})")

        chosen = min(urn, key=lambda phrase_id: (coverage.score(by_id[phrase_id]), urn.index(phrase_id)))
        urn.remove(chosen)

        drawn = replace(progress, eternal_urn=tuple(urn), urn_generation=generation)
        return by_id[chosen], drawn, errors

    def breakdown_sequence(self, lego: Lego) -> list[Phrase]:
        """Components then the LEGO itself, for rebuilding after a breakdown spike."""
        components, _ = self._playable(self.graph.phrases_for(lego.id, PhraseRole.COMPONENT))
        whole, _ = self._playable([lego.as_phrase()])
        return components + whole
