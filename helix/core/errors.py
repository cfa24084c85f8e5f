"""
Exception hierarchy for the helix scheduler.

Content problems are recoverable at the selector/orchestrator seam (skip and
log); desync and persistence conflicts are surfaced to callers.
"""
from __future__ import annotations


class HelixError(Exception):
    """Base class for scheduler errors."""


class ConfigError(HelixError):
    """Learning configuration failed validation."""


class UnknownCourseError(HelixError):
    """No course graph exists for the requested course code."""

    def __init__(self, course_code: str):
        super().__init__(f"Unknown course: {course_code}")
        self.course_code = course_code


# =============================================================================
# Content integrity
# =============================================================================


class ContentIntegrityError(HelixError):
    """The course graph violates an invariant the content pipeline should enforce."""

    def __init__(self, message: str, lego_id: str | None = None, phrase_id: str | None = None):
        super().__init__(message)
        self.lego_id = lego_id
        self.phrase_id = phrase_id


class BasketConstraintViolation(ContentIntegrityError):
    """A phrase references vocabulary introduced after its owning LEGO."""

    def __init__(self, phrase_id: str, lego_id: str, offending_ids: list[str]):
        super().__init__(
            f"Phrase {phrase_id} for {lego_id} references later LEGOs: {', '.join(offending_ids)}",
            lego_id=lego_id,
            phrase_id=phrase_id,
        )
        self.offending_ids = offending_ids


class MissingAudioError(ContentIntegrityError):
    """A phrase or LEGO lacks one of its required audio references."""


class NoEligiblePhraseError(ContentIntegrityError):
    """No phrase survives filtering for the requested LEGO and phase."""


class ContentGraphDesyncError(ContentIntegrityError):
    """A thread queue references a Seed that is not present in the course graph."""

    def __init__(self, seed_id: str, thread_id: int):
        super().__init__(f"Thread {thread_id} references unknown seed {seed_id}")
        self.seed_id = seed_id
        self.thread_id = thread_id


# =============================================================================
# Persistence / session
# =============================================================================


class PersistenceConflictError(HelixError):
    """A concurrent writer updated the learner's state since it was read."""

    def __init__(self, learner_id: str, course_code: str, expected_version: int):
        super().__init__(
            f"Stale write for learner {learner_id} in {course_code} "
            f"(expected version {expected_version})"
        )
        self.learner_id = learner_id
        self.course_code = course_code
        self.expected_version = expected_version


class SessionNotStartedError(HelixError):
    """An orchestrator call needs an open session for the learner."""


class NoPendingCycleError(HelixError):
    """record_response was called with no cycle awaiting an answer."""
