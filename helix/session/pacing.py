"""Pause computation and production/listening split."""
from __future__ import annotations

from enum import Enum

from helix.core.learning_config import PacingConfig, SessionStructureConfig

BASE_WORDS = 3


class CycleMode(str, Enum):
    PRODUCTION = "production"  # learner speaks in the pause
    LISTENING = "listening"  # prompt and answer play back to back


def compute_pause_ms(word_count: int, pacing: PacingConfig, extension: float = 1.0) -> int:
    """
    Pause for the learner to speak a phrase of `word_count` target words.

    base + ms_per_extra_word for each word beyond three, scaled by the pacing
    multiplier and any spike extension, clamped to [min_pause_ms, max_pause_ms].
    """
    raw = pacing.pause_base_ms + pacing.ms_per_extra_word * max(0, word_count - BASE_WORDS)
    scaled = raw * pacing.pause_multiplier * extension
    return int(min(max(scaled, pacing.min_pause_ms), pacing.max_pause_ms))


def cycle_mode(cycle: int, introduced_seeds: int, structure: SessionStructureConfig) -> CycleMode:
    """
    Production or listening for a cycle, spread evenly so that the milestone's
    production percentage holds over any 100 consecutive cycles. Cycle 0 is
    always production.
    """
    pct = structure.production_pct(introduced_seeds)
    if (cycle * pct) % 100 < pct:
        return CycleMode.PRODUCTION
    return CycleMode.LISTENING
