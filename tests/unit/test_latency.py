"""
Unit tests for LatencyClassifier and SessionLatencyTracker.
"""

from dataclasses import replace

import pytest
from pydantic import ValidationError

from helix.adaptive.baseline import CalibrationStatus, LearnerBaseline
from helix.adaptive.latency import (
    LatencyClassifier,
    SessionLatencyTracker,
    SpikeResponse,
    normalize_latency,
)
from helix.core.learning_config import SpikeConfig


@pytest.fixture
def baseline():
    return LearnerBaseline(
        learner_id="learner-1",
        status=CalibrationStatus.CALIBRATED,
        latency_mean=800.0,
        latency_stddev=150.0,
        had_timing_data=True,
    )


@pytest.fixture
def classifier():
    return LatencyClassifier(SpikeConfig(sensitivity_k=2.0))


class TestNormalize:
    def test_per_character(self):
        assert normalize_latency(1200, "hola amigo") == 120.0

    def test_short_phrase_floored(self):
        assert normalize_latency(1000, "sí") == 200.0
        assert normalize_latency(1000, "sí", min_phrase_length=2) == 500.0


class TestClassify:
    """threshold = mean + k * stddev."""

    def test_threshold(self, classifier, baseline):
        assert classifier.threshold(baseline) == 1100.0

    def test_above_threshold_repeats(self, classifier, baseline):
        result = classifier.classify(1300, baseline)
        assert result.triggered_spike is True
        assert result.threshold == 1100.0
        assert result.response == SpikeResponse.REPEAT

    def test_below_threshold_no_spike(self, classifier, baseline):
        result = classifier.classify(900, baseline)
        assert result.triggered_spike is False
        assert result.response == SpikeResponse.NONE

    def test_threshold_itself_is_not_a_spike(self, classifier, baseline):
        assert classifier.classify(1100, baseline).triggered_spike is False

    def test_molecular_between_thresholds_repeats(self, classifier, baseline):
        assert classifier.classify(1300, baseline, is_molecular=True).response == SpikeResponse.REPEAT

    def test_molecular_far_outlier_breaks_down(self, classifier, baseline):
        assert classifier.breakdown_threshold(baseline) == 1325.0
        result = classifier.classify(1400, baseline, is_molecular=True)
        assert result.response == SpikeResponse.BREAKDOWN

    def test_atomic_far_outlier_only_repeats(self, classifier, baseline):
        assert classifier.classify(1400, baseline, is_molecular=False).response == SpikeResponse.REPEAT

    def test_uncalibrated_disables_detection(self, classifier):
        uncalibrated = LearnerBaseline(learner_id="new", latency_mean=300.0, latency_stddev=100.0)
        result = classifier.classify(5000, uncalibrated)
        assert result.triggered_spike is False
        assert result.threshold is None

    def test_calibrated_without_timing_data_disabled(self, classifier, baseline):
        result = classifier.classify(5000, replace(baseline, had_timing_data=False))
        assert result.triggered_spike is False

    def test_disabled_in_config(self, baseline):
        result = LatencyClassifier(SpikeConfig(enabled=False)).classify(5000, baseline)
        assert result.triggered_spike is False

    def test_cooldown_suppresses(self, classifier, baseline):
        result = classifier.classify(1300, baseline, in_cooldown=True)
        assert result.triggered_spike is False
        assert result.threshold == 1100.0


class TestResponseStrategy:
    """Which replay a spike asks for, per configured strategy."""

    def test_default_is_magnitude(self):
        assert SpikeConfig().response_strategy == "magnitude"

    def test_repeat_strategy_ignores_magnitude(self, baseline):
        classifier = LatencyClassifier(SpikeConfig(response_strategy="repeat"))
        assert classifier.classify(5000, baseline, is_molecular=True).response == SpikeResponse.REPEAT

    def test_breakdown_strategy_for_molecular(self, baseline):
        classifier = LatencyClassifier(SpikeConfig(response_strategy="breakdown"))
        assert classifier.classify(1300, baseline, is_molecular=True).response == SpikeResponse.BREAKDOWN
        assert classifier.classify(1300, baseline, is_molecular=False).response == SpikeResponse.REPEAT

    def test_breakdown_strategy_still_needs_a_spike(self, baseline):
        classifier = LatencyClassifier(SpikeConfig(response_strategy="breakdown"))
        assert classifier.classify(900, baseline, is_molecular=True).response == SpikeResponse.NONE

    def test_alternate_follows_sequence(self, baseline):
        config = SpikeConfig(response_strategy="alternate")
        classifier, tracker = LatencyClassifier(config), SessionLatencyTracker(config)

        responses = []
        for _ in range(3):
            result = classifier.classify(
                1300, baseline, is_molecular=True, alternate_index=tracker.alternate_index
            )
            tracker.observe(result)
            responses.append(result.response)

        assert responses == [SpikeResponse.REPEAT, SpikeResponse.BREAKDOWN, SpikeResponse.REPEAT]

    def test_alternate_atomic_falls_back_to_repeat(self, baseline):
        classifier = LatencyClassifier(SpikeConfig(response_strategy="alternate"))
        result = classifier.classify(1300, baseline, is_molecular=False, alternate_index=1)
        assert result.response == SpikeResponse.REPEAT

    def test_alternate_index_only_moves_on_spikes(self, baseline):
        config = SpikeConfig(response_strategy="alternate", alternate_sequence=["breakdown", "repeat", "repeat"])
        classifier, tracker = LatencyClassifier(config), SessionLatencyTracker(config)

        tracker.observe(classifier.classify(800, baseline))
        assert tracker.alternate_index == 0
        tracker.observe(classifier.classify(1300, baseline))
        assert tracker.alternate_index == 1

    def test_magnitude_strategy_keeps_index_still(self, classifier, baseline):
        tracker = SessionLatencyTracker(classifier.config)
        tracker.observe(classifier.classify(1300, baseline))
        assert tracker.alternate_index == 0

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValidationError):
            SpikeConfig(response_strategy="random")

    def test_empty_sequence_rejected(self):
        with pytest.raises(ValidationError):
            SpikeConfig(alternate_sequence=[])


class TestSessionTracker:
    """Rolling window, cooldown and pause extension."""

    def test_rolling_window_bounded(self, classifier, baseline):
        tracker = SessionLatencyTracker(SpikeConfig(rolling_window_size=3))
        for value in (100, 200, 300, 400):
            tracker.observe(classifier.classify(value, baseline))
        assert list(tracker.window) == [200, 300, 400]
        assert tracker.rolling_average == 300.0

    def test_empty_average(self):
        assert SessionLatencyTracker().rolling_average is None

    def test_cooldown_counts_items(self, classifier, baseline):
        tracker = SessionLatencyTracker(SpikeConfig(cooldown_items=2))
        assert tracker.in_cooldown is False

        tracker.observe(classifier.classify(1300, baseline))
        assert tracker.in_cooldown is True
        tracker.observe(classifier.classify(800, baseline))
        assert tracker.in_cooldown is True
        tracker.observe(classifier.classify(800, baseline))
        assert tracker.in_cooldown is False

    def test_pause_extension_after_spike(self, classifier, baseline):
        tracker = SessionLatencyTracker(SpikeConfig(pause_extension_factor=0.3, pause_extension_items=2))
        assert tracker.take_pause_extension() == 1.0

        tracker.observe(classifier.classify(1300, baseline))
        assert tracker.take_pause_extension() == pytest.approx(1.3)
        assert tracker.take_pause_extension() == pytest.approx(1.3)
        assert tracker.take_pause_extension() == 1.0

    def test_speeding_up_feedback(self, classifier, baseline):
        tracker = SessionLatencyTracker()
        for _ in range(4):
            tracker.observe(classifier.classify(500, baseline))
        assert tracker.feedback(baseline) is None

        tracker.observe(classifier.classify(500, baseline))
        assert tracker.feedback(baseline) == SessionLatencyTracker.SPEEDING_UP

    def test_no_feedback_at_baseline_pace(self, classifier, baseline):
        tracker = SessionLatencyTracker()
        for _ in range(10):
            tracker.observe(classifier.classify(790, baseline))
        assert tracker.feedback(baseline) is None
