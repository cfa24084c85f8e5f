"""
Course Graph - read-only Seed -> LEGO -> Phrase model.

The graph is produced and validated offline by the content pipeline; the
scheduler only reads it. Global LEGO order is (seed_number, lego_index) and is
what the basket constraint is checked against.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from helix.core.errors import ContentIntegrityError

LEGO_ID_PATTERN = re.compile(r"^S(\d{4,})L(\d{2,})$")


class LegoKind(str, Enum):
    """Atomic (indivisible) or Molecular (built from components)."""

    ATOMIC = "A"
    MOLECULAR = "M"


class PhraseRole(str, Enum):
    COMPONENT = "component"
    PRACTICE = "practice"
    ETERNAL_ELIGIBLE = "eternal_eligible"


class LegoPosition(str, Enum):
    """Where the owning LEGO sits inside a practice phrase."""

    START = "start"
    MIDDLE = "middle"
    END = "end"


def seed_id_for(seed_number: int) -> str:
    return f"S{seed_number:04d}"


def lego_id_for(seed_number: int, lego_index: int) -> str:
    return f"S{seed_number:04d}L{lego_index:02d}"


def parse_lego_id(lego_id: str) -> tuple[int, int]:
    """
    Parse a textual LEGO id into its (seed_number, lego_index) order key.

    Raises:
        ContentIntegrityError: id is not of the form S0001L01
    """
    match = LEGO_ID_PATTERN.match(lego_id)
    if not match:
        raise ContentIntegrityError(f"Malformed LEGO id: {lego_id!r}", lego_id=lego_id)
    return int(match.group(1)), int(match.group(2))


@dataclass(frozen=True)
class AudioRef:
    """Audio references for one presentable unit (prompt + two target voices)."""

    known: str | None = None
    target_1: str | None = None
    target_2: str | None = None
    target_duration_ms: int | None = None

    def missing(self, require_voice2: bool = True) -> list[str]:
        """Names of required references that are absent."""
        required = ["known", "target_1"] + (["target_2"] if require_voice2 else [])
        return [name for name in required if not getattr(self, name)]


@dataclass(frozen=True)
class Phrase:
    """A practice sentence attached to one LEGO."""

    id: str
    lego_id: str
    role: PhraseRole
    known_text: str
    target_text: str
    word_count: int
    syllable_count: int | None = None
    connected_lego_ids: tuple[str, ...] = ()
    lego_position: LegoPosition | None = None
    audio: AudioRef = field(default_factory=AudioRef)
    position: int = 0  # authoring order within the LEGO

    @property
    def length_key(self) -> int:
        """Build-up ordering key: syllables when known, else words."""
        return self.syllable_count if self.syllable_count is not None else self.word_count


@dataclass(frozen=True)
class Lego:
    """A vocabulary unit extracted from a Seed."""

    seed_number: int
    lego_index: int
    kind: LegoKind
    known_text: str
    target_text: str
    components: tuple[str, ...] = ()
    audio: AudioRef = field(default_factory=AudioRef)

    @property
    def id(self) -> str:
        return lego_id_for(self.seed_number, self.lego_index)

    @property
    def seed_id(self) -> str:
        return seed_id_for(self.seed_number)

    @property
    def order(self) -> tuple[int, int]:
        return (self.seed_number, self.lego_index)

    @property
    def is_molecular(self) -> bool:
        return self.kind == LegoKind.MOLECULAR

    def as_phrase(self) -> Phrase:
        """Present the LEGO itself as a one-off phrase (introduction or fallback)."""
        return Phrase(
            id=f"{self.id}:self",
            lego_id=self.id,
            role=PhraseRole.COMPONENT,
            known_text=self.known_text,
            target_text=self.target_text,
            word_count=len(self.target_text.split()),
            connected_lego_ids=(self.id,),
            audio=self.audio,
        )


@dataclass(frozen=True)
class Seed:
    """A full sentence pair; its LEGOs are listed in lego_index order."""

    seed_number: int
    known_text: str
    target_text: str
    lego_ids: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return seed_id_for(self.seed_number)


class CourseGraph:
    """
    Indexed, read-only view over one course's content.

    Usage:
        graph = CourseGraph("spa_for_eng", seeds, legos, phrases)
        lego = graph.lego("S0001L01")
        steps = graph.phrases_for("S0001L01", PhraseRole.COMPONENT)
    """

    def __init__(
        self,
        course_code: str,
        seeds: list[Seed],
        legos: list[Lego],
        phrases: list[Phrase],
        known_language: str = "",
        target_language: str = "",
    ):
        self.course_code = course_code
        self.known_language = known_language
        self.target_language = target_language

        self._seeds = {seed.id: seed for seed in sorted(seeds, key=lambda s: s.seed_number)}
        self._legos = {lego.id: lego for lego in sorted(legos, key=lambda l: l.order)}
        self._phrases: dict[str, list[Phrase]] = {}
        for phrase in phrases:
            self._phrases.setdefault(phrase.lego_id, []).append(phrase)
        for bucket in self._phrases.values():
            bucket.sort(key=lambda p: (p.position, p.id))

    def __repr__(self) -> str:
        return f"<CourseGraph {self.course_code} seeds={len(self._seeds)} legos={len(self._legos)}>"

    @property
    def seeds(self) -> list[Seed]:
        """Seeds in sequence order."""
        return list(self._seeds.values())

    @property
    def legos(self) -> list[Lego]:
        """LEGOs in global order."""
        return list(self._legos.values())

    def get_seed(self, seed_id: str) -> Seed | None:
        return self._seeds.get(seed_id)

    def get_lego(self, lego_id: str) -> Lego | None:
        return self._legos.get(lego_id)

    def lego(self, lego_id: str) -> Lego:
        """
        Look up a LEGO that must exist.

        Raises:
            ContentIntegrityError: LEGO id is unknown to this course
        """
        lego = self._legos.get(lego_id)
        if lego is None:
            raise ContentIntegrityError(
                f"LEGO {lego_id} not in course {self.course_code}", lego_id=lego_id
            )
        return lego

    def phrases_for(self, lego_id: str, role: PhraseRole | None = None) -> list[Phrase]:
        """Phrases attached to a LEGO in authoring order, optionally filtered by role."""
        phrases = self._phrases.get(lego_id, [])
        if role is None:
            return list(phrases)
        return [p for p in phrases if p.role == role]

    def order_of(self, lego_id: str) -> tuple[int, int]:
        """Global order key; known LEGOs use their own record, others are parsed."""
        lego = self._legos.get(lego_id)
        if lego is not None:
            return lego.order
        return parse_lego_id(lego_id)
