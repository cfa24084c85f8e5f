"""Read-only course graph: Seeds -> LEGOs -> Phrases."""
from .graph import CourseGraph, Lego, LegoKind, LegoPosition, Phrase, PhraseRole, Seed
from .sources import JsonContentGraphSource, StaticContentGraphSource, build_course_graph

__all__ = [
    "CourseGraph",
    "JsonContentGraphSource",
    "Lego",
    "LegoKind",
    "LegoPosition",
    "Phrase",
    "PhraseRole",
    "Seed",
    "StaticContentGraphSource",
    "build_course_graph",
]
