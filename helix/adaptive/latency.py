"""
Latency Classifier.

    normalized  = latency_ms / max(len(target_text), min_phrase_length)
    spike       = normalized > mean + k * stddev
    breakdown   = spike and normalized > mean + breakdown_k * stddev
                  and the LEGO is Molecular (Atomic LEGOs only repeat)

That is the default "magnitude" response strategy. The fixed "repeat" and
"breakdown" strategies ignore the magnitude, and "alternate" walks
alternate_sequence one spike at a time. Breakdown always falls back to repeat
for Atomic LEGOs.

Classification is a pure function of the baseline. The session tracker keeps
the session-scoped rolling average (independent of the long-term baseline)
that drives "speeding up" feedback, plus the spike cooldown and pause
extension counters.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from helix.adaptive.baseline import LearnerBaseline
from helix.core.learning_config import SpikeConfig


class SpikeResponse(str, Enum):
    NONE = "none"
    REPEAT = "repeat"
    BREAKDOWN = "breakdown"


@dataclass(frozen=True)
class Classification:
    normalized_latency: float
    threshold: float | None  # None = spike detection disabled
    triggered_spike: bool
    response: SpikeResponse


@dataclass(frozen=True)
class ResponseMetric:
    """Immutable record of one learner response."""

    learner_id: str
    course_code: str
    cycle_number: int
    thread_id: int
    lego_id: str
    phrase_id: str
    latency_ms: float | None
    duration_ms: float | None
    normalized_latency: float | None
    triggered_spike: bool
    recorded_at: datetime
    session_id: int | None = None


@dataclass(frozen=True)
class SpikeEvent:
    """Immutable record of one detected spike."""

    learner_id: str
    course_code: str
    lego_id: str
    phrase_id: str
    normalized_latency: float
    threshold: float
    response: SpikeResponse
    recorded_at: datetime
    session_id: int | None = None


def normalize_latency(latency_ms: float, target_text: str, min_phrase_length: int = 5) -> float:
    """Latency per target character, with short phrases floored."""
    return latency_ms / max(len(target_text), min_phrase_length)


class LatencyClassifier:
    """
    Compares one response against a learner baseline.

    Usage:
        classifier = LatencyClassifier(config.spike)
        result = classifier.classify(normalized, baseline, is_molecular=True)
    """

    def __init__(self, config: SpikeConfig | None = None):
        self.config = config or SpikeConfig()

    def threshold(self, baseline: LearnerBaseline) -> float:
        return baseline.latency_mean + self.config.sensitivity_k * baseline.latency_stddev

    def breakdown_threshold(self, baseline: LearnerBaseline) -> float:
        return baseline.latency_mean + self.config.breakdown_k * baseline.latency_stddev

    def classify(
        self,
        normalized_latency: float,
        baseline: LearnerBaseline,
        is_molecular: bool = False,
        in_cooldown: bool = False,
        alternate_index: int = 0,
    ) -> Classification:
        """
        Classify a normalized latency.

        Args:
            normalized_latency: ms per target character
            baseline: Learner baseline (uncalibrated = detection disabled)
            is_molecular: Whether the LEGO can be broken into components
            in_cooldown: A spike fired within the last cooldown_items responses
            alternate_index: Position in alternate_sequence (alternate strategy only)

        Returns:
            Classification with the spike flag and repeat/breakdown response
        """
        if not self.config.enabled or not baseline.is_calibrated:
            return Classification(normalized_latency, None, False, SpikeResponse.NONE)

        threshold = self.threshold(baseline)
        if normalized_latency <= threshold or in_cooldown:
            return Classification(normalized_latency, threshold, False, SpikeResponse.NONE)

        response = self.spike_response(normalized_latency, baseline, is_molecular, alternate_index)
        return Classification(normalized_latency, threshold, True, response)

    def spike_response(
        self,
        normalized_latency: float,
        baseline: LearnerBaseline,
        is_molecular: bool,
        alternate_index: int = 0,
    ) -> SpikeResponse:
        strategy = self.config.response_strategy
        if strategy == "repeat":
            wanted = SpikeResponse.REPEAT
        elif strategy == "breakdown":
            wanted = SpikeResponse.BREAKDOWN
        elif strategy == "alternate":
            sequence = self.config.alternate_sequence
            wanted = SpikeResponse(sequence[alternate_index % len(sequence)])
        elif normalized_latency > self.breakdown_threshold(baseline):
            wanted = SpikeResponse.BREAKDOWN
        else:
            wanted = SpikeResponse.REPEAT

        if wanted == SpikeResponse.BREAKDOWN and not is_molecular:
            return SpikeResponse.REPEAT
        return wanted


class SessionLatencyTracker:
    """
    Session-scoped latency state. Lives only as long as the session and never
    touches the learner baseline.
    """

    SPEEDING_UP = "speeding_up"

    def __init__(self, config: SpikeConfig | None = None):
        self.config = config or SpikeConfig()
        self.window: deque[float] = deque(maxlen=self.config.rolling_window_size)
        self.items_since_spike: int | None = None
        self.extension_remaining = 0
        self.alternate_index = 0

    @property
    def rolling_average(self) -> float | None:
        if not self.window:
            return None
        return sum(self.window) / len(self.window)

    @property
    def in_cooldown(self) -> bool:
        if self.items_since_spike is None:
            return False
        return self.items_since_spike < self.config.cooldown_items

    def observe(self, classification: Classification) -> None:
        """Fold one classified response into the session window."""
        self.window.append(classification.normalized_latency)
        if classification.triggered_spike:
            self.items_since_spike = 0
            self.extension_remaining = self.config.pause_extension_items
            if self.config.response_strategy == "alternate":
                self.alternate_index = (self.alternate_index + 1) % len(self.config.alternate_sequence)
        elif self.items_since_spike is not None:
            self.items_since_spike += 1

    def take_pause_extension(self) -> float:
        """Pause multiplier for the next cycle (consumes one extended item)."""
        if self.extension_remaining <= 0:
            return 1.0
        self.extension_remaining -= 1
        return 1.0 + self.config.pause_extension_factor

    def feedback(self, baseline: LearnerBaseline) -> str | None:
        """'speeding_up' once half a window is in and the average beats the baseline."""
        if not baseline.is_calibrated or len(self.window) < max(1, self.window.maxlen // 2):
            return None
        if self.rolling_average < baseline.latency_mean * (1 - self.config.speedup_margin):
            return self.SPEEDING_UP
        return None
