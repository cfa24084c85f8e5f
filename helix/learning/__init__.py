"""Scheduling core: spaced repetition, phrase selection, thread interleaving."""
from .phrase_selector import CoverageLedger, CyclePhase, PhraseSelector
from .spaced_repetition import LegoProgress, LegoState, SpacedRepetitionTracker
from .thread_scheduler import HelixState, ThreadScheduler, ThreadState, deal_seeds

__all__ = [
    "CoverageLedger",
    "CyclePhase",
    "HelixState",
    "LegoProgress",
    "LegoState",
    "PhraseSelector",
    "SpacedRepetitionTracker",
    "ThreadScheduler",
    "ThreadState",
    "deal_seeds",
]
