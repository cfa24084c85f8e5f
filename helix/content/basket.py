"""
Basket constraint and audio completeness checks.

A phrase may only use vocabulary the learner already owns: every LEGO it
decomposes into must come at or before its owning LEGO in global order.
"""
from __future__ import annotations

from helix.content.graph import CourseGraph, Phrase
from helix.core.errors import BasketConstraintViolation, ContentIntegrityError, MissingAudioError


def basket_violations(phrase: Phrase, graph: CourseGraph) -> list[str]:
    """
    LEGO ids the phrase references that come after its owner.

    Raises:
        ContentIntegrityError: a referenced id is malformed
    """
    owner_order = graph.order_of(phrase.lego_id)
    return [
        lego_id
        for lego_id in phrase.connected_lego_ids
        if graph.order_of(lego_id) > owner_order
    ]


def check_basket(phrase: Phrase, graph: CourseGraph) -> None:
    """
    Raises:
        BasketConstraintViolation: phrase references later vocabulary
    """
    offending = basket_violations(phrase, graph)
    if offending:
        raise BasketConstraintViolation(phrase.id, phrase.lego_id, offending)


def check_audio(phrase: Phrase, require_voice2: bool = True) -> None:
    """
    Raises:
        MissingAudioError: prompt or target voice reference absent
    """
    missing = phrase.audio.missing(require_voice2)
    if missing:
        raise MissingAudioError(
            f"Phrase {phrase.id} is missing audio: {', '.join(missing)}",
            lego_id=phrase.lego_id,
            phrase_id=phrase.id,
        )


def check_playable(phrase: Phrase, graph: CourseGraph, require_voice2: bool = True) -> None:
    """Full selection-time gate: basket first, then audio."""
    try:
        check_basket(phrase, graph)
    except BasketConstraintViolation:
        raise
    except ContentIntegrityError as e:
        raise ContentIntegrityError(
            f"Phrase {phrase.id} has unreadable references: {e}",
            lego_id=phrase.lego_id,
            phrase_id=phrase.id,
        ) from e
    check_audio(phrase, require_voice2)
