"""
Content graph sources.

`get_course_graph(course_code)` is the only read the scheduler makes against
the content pipeline. Course files are JSON documents validated with pydantic
before they are indexed into a CourseGraph.

File layout (one file per course, <content_dir>/<course_code>.json):

    {
      "course_code": "spa_for_eng",
      "known_language": "eng",
      "target_language": "spa",
      "seeds": [
        {"seed_number": 1, "known": "...", "target": "...",
         "legos": [
           {"lego_index": 1, "kind": "M", "known": "...", "target": "...",
            "components": ["...", "..."],
            "audio": {"known": "...", "target_1": "...", "target_2": "..."},
            "phrases": [{"id": "...", "role": "component", ...}]}
         ]}
      ]
    }
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from helix.content.graph import (
    AudioRef,
    CourseGraph,
    Lego,
    LegoKind,
    LegoPosition,
    Phrase,
    PhraseRole,
    Seed,
    lego_id_for,
)
from helix.core.errors import ContentIntegrityError, UnknownCourseError


class ContentGraphSource(Protocol):
    """Anything that can hand out a course graph by code."""

    def get_course_graph(self, course_code: str) -> CourseGraph:
        ...


# =============================================================================
# Payload models
# =============================================================================


class AudioPayload(BaseModel):
    known: str | None = None
    target_1: str | None = None
    target_2: str | None = None
    target_duration_ms: int | None = Field(default=None, ge=0)


class PhrasePayload(BaseModel):
    id: str
    role: PhraseRole
    known: str
    target: str
    word_count: int | None = Field(default=None, ge=1)
    syllable_count: int | None = Field(default=None, ge=1)
    connected_lego_ids: list[str] = Field(default_factory=list)
    lego_position: LegoPosition | None = None
    audio: AudioPayload = Field(default_factory=AudioPayload)


class LegoPayload(BaseModel):
    lego_index: int = Field(ge=1)
    kind: LegoKind = LegoKind.ATOMIC
    known: str
    target: str
    components: list[str] = Field(default_factory=list)
    audio: AudioPayload = Field(default_factory=AudioPayload)
    phrases: list[PhrasePayload] = Field(default_factory=list)


class SeedPayload(BaseModel):
    seed_number: int = Field(ge=1)
    known: str
    target: str
    legos: list[LegoPayload] = Field(default_factory=list)

    @field_validator("legos")
    @classmethod
    def _unique_lego_indexes(cls, value: list[LegoPayload]) -> list[LegoPayload]:
        indexes = [lego.lego_index for lego in value]
        if len(indexes) != len(set(indexes)):
            raise ValueError("duplicate lego_index within seed")
        return value


class CoursePayload(BaseModel):
    course_code: str
    known_language: str = ""
    target_language: str = ""
    seeds: list[SeedPayload]

    @field_validator("seeds")
    @classmethod
    def _unique_seed_numbers(cls, value: list[SeedPayload]) -> list[SeedPayload]:
        numbers = [seed.seed_number for seed in value]
        if len(numbers) != len(set(numbers)):
            raise ValueError("duplicate seed_number")
        return value


def _audio(payload: AudioPayload) -> AudioRef:
    return AudioRef(
        known=payload.known,
        target_1=payload.target_1,
        target_2=payload.target_2,
        target_duration_ms=payload.target_duration_ms,
    )


def build_course_graph(data: dict) -> CourseGraph:
    """
    Validate a course document and index it.

    Raises:
        ContentIntegrityError: document does not match the course schema
    """
    try:
        course = CoursePayload.model_validate(data)
    except ValidationError as e:
        raise ContentIntegrityError(f"Invalid course document: {e}") from e

    seeds: list[Seed] = []
    legos: list[Lego] = []
    phrases: list[Phrase] = []

    for seed in course.seeds:
        ordered = sorted(seed.legos, key=lambda l: l.lego_index)
        seeds.append(
            Seed(
                seed_number=seed.seed_number,
                known_text=seed.known,
                target_text=seed.target,
                lego_ids=tuple(lego_id_for(seed.seed_number, l.lego_index) for l in ordered),
            )
        )
        for lego in ordered:
            lego_id = lego_id_for(seed.seed_number, lego.lego_index)
            legos.append(
                Lego(
                    seed_number=seed.seed_number,
                    lego_index=lego.lego_index,
                    kind=lego.kind,
                    known_text=lego.known,
                    target_text=lego.target,
                    components=tuple(lego.components),
                    audio=_audio(lego.audio),
                )
            )
            for position, phrase in enumerate(lego.phrases):
                phrases.append(
                    Phrase(
                        id=phrase.id,
                        lego_id=lego_id,
                        role=phrase.role,
                        known_text=phrase.known,
                        target_text=phrase.target,
                        word_count=phrase.word_count or len(phrase.target.split()),
                        syllable_count=phrase.syllable_count,
                        connected_lego_ids=tuple(phrase.connected_lego_ids) or (lego_id,),
                        lego_position=phrase.lego_position,
                        audio=_audio(phrase.audio),
                        position=position,
                    )
                )

    return CourseGraph(
        course.course_code,
        seeds,
        legos,
        phrases,
        known_language=course.known_language,
        target_language=course.target_language,
    )


# =============================================================================
# Sources
# =============================================================================


class JsonContentGraphSource:
    """Loads <course_code>.json files from a directory, caching parsed graphs."""

    def __init__(self, content_dir: Path | str):
        self.content_dir = Path(content_dir)
        self._cache: dict[str, CourseGraph] = {}

    def available_courses(self) -> list[str]:
        if not self.content_dir.exists():
            return []
        return sorted(p.stem for p in self.content_dir.glob("*.json"))

    def get_course_graph(self, course_code: str) -> CourseGraph:
        """
        Load (or return the cached) graph for a course.

        Raises:
            UnknownCourseError: no file for the course code
            ContentIntegrityError: file is not a valid course document
        """
        if course_code in self._cache:
            return self._cache[course_code]

        path = self.content_dir / f"{course_code}.json"
        if not path.exists():
            raise UnknownCourseError(course_code)

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ContentIntegrityError(f"Invalid JSON in {path}: {e}") from e

        graph = build_course_graph(data)
        if graph.course_code != course_code:
            raise ContentIntegrityError(
                f"{path.name} declares course_code {graph.course_code!r}"
            )

        logger.info(f"Loaded {graph!r} from {path}")
        self._cache[course_code] = graph
        return graph


class StaticContentGraphSource:
    """Serves graphs that are already in memory (tests, simulations)."""

    def __init__(self, *graphs: CourseGraph):
        self._graphs = {graph.course_code: graph for graph in graphs}

    def add(self, graph: CourseGraph) -> None:
        self._graphs[graph.course_code] = graph

    def get_course_graph(self, course_code: str) -> CourseGraph:
        graph = self._graphs.get(course_code)
        if graph is None:
            raise UnknownCourseError(course_code)
        return graph
