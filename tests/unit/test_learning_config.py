"""
Unit tests for the learning configuration tree and resolver.

Tests:
- Defaults and pacing presets
- Section-level course overlays
- Validation failures surface as ConfigError
"""

import json
from types import SimpleNamespace

import pytest

from helix.core.errors import ConfigError
from helix.core.learning_config import (
    PACING_PRESETS,
    ConfigResolver,
    LearningConfig,
    SessionStructureConfig,
    merge_config,
)


class TestDefaults:
    """Defaults match the normal pacing preset and the published constants."""

    def test_repetition_defaults(self):
        config = LearningConfig()
        assert config.repetition.fibonacci_sequence == [0, 1, 1, 2, 3, 5, 8, 13]
        assert config.repetition.fibonacci_cap == 7
        assert config.repetition.retirement_reps == 10

    def test_spike_defaults(self):
        config = LearningConfig()
        assert config.spike.sensitivity_k == 2.0
        assert config.spike.breakdown_k >= config.spike.sensitivity_k
        assert config.spike.rolling_window_size == 10

    def test_normal_mode_matches_pacing_defaults(self):
        pacing = LearningConfig().pacing.model_dump()
        for key, value in PACING_PRESETS["normal_mode"].items():
            assert pacing[key] == value


class TestSessionStructure:
    """Production percentage by introduced-seed milestone."""

    @pytest.mark.parametrize(
        "seeds,expected",
        [(0, 90), (49, 90), (50, 70), (149, 70), (150, 50), (500, 50)],
    )
    def test_production_pct(self, seeds, expected):
        assert SessionStructureConfig().production_pct(seeds) == expected

    def test_thread_weights_need_three_positive(self):
        with pytest.raises(ValueError):
            SessionStructureConfig(thread_weights=[1.0, 1.0])


class TestMerge:
    """Section-level overlay."""

    def test_overlay_keeps_untouched_keys(self):
        merged = merge_config(LearningConfig(), {"spike": {"sensitivity_k": 2.5}})
        assert merged.spike.sensitivity_k == 2.5
        assert merged.spike.rolling_window_size == 10
        assert merged.pacing == LearningConfig().pacing

    def test_unknown_section_rejected(self):
        with pytest.raises(ConfigError, match="Unknown"):
            merge_config(LearningConfig(), {"colour": {"x": 1}})

    def test_cap_must_index_sequence(self):
        with pytest.raises(ConfigError):
            merge_config(LearningConfig(), {"repetition": {"fibonacci_cap": 8}})

    def test_breakdown_below_sensitivity_rejected(self):
        with pytest.raises(ConfigError):
            merge_config(LearningConfig(), {"spike": {"sensitivity_k": 3.0, "breakdown_k": 2.0}})

    def test_sequence_must_start_at_zero(self):
        with pytest.raises(ConfigError):
            merge_config(LearningConfig(), {"repetition": {"fibonacci_sequence": [1, 1, 2]}})


class TestConfigResolver:
    """Global defaults + pacing preset + per-course overlay."""

    def test_turbo_preset_applied_globally(self):
        resolver = ConfigResolver(pacing_mode="turbo_boost")
        config = resolver.resolve("any_course")
        assert config.pacing.playback_speed == 1.25
        assert config.pacing.spaced_rep_fraction == 0.33
        assert config.pacing.min_pause_ms == 800

    def test_course_overlay_only_affects_that_course(self):
        resolver = ConfigResolver(
            course_overrides={"spa_for_eng": {"repetition": {"retirement_reps": 4}}}
        )
        assert resolver.resolve("spa_for_eng").repetition.retirement_reps == 4
        assert resolver.resolve("fra_for_eng").repetition.retirement_reps == 10

    def test_course_overlay_sits_on_global_overrides(self):
        resolver = ConfigResolver(
            global_overrides={"spike": {"sensitivity_k": 1.5}},
            course_overrides={"spa_for_eng": {"spike": {"rolling_window_size": 4}}},
        )
        config = resolver.resolve("spa_for_eng")
        assert config.spike.sensitivity_k == 1.5
        assert config.spike.rolling_window_size == 4

    def test_unknown_pacing_mode(self):
        with pytest.raises(ConfigError):
            ConfigResolver(pacing_mode="warp_speed")

    def test_from_settings_reads_json_files(self, tmp_path):
        global_path = tmp_path / "learning.json"
        global_path.write_text(json.dumps({"calibration": {"calibration_items": 5}}))
        course_path = tmp_path / "courses.json"
        course_path.write_text(json.dumps({"demo": {"pacing": {"skip_voice2": True}}}))

        settings = SimpleNamespace(
            learning_config_path=global_path,
            course_overrides_path=course_path,
            pacing_mode="normal_mode",
        )
        config = ConfigResolver.from_settings(settings).resolve("demo")

        assert config.calibration.calibration_items == 5
        assert config.pacing.skip_voice2 is True

    def test_from_settings_missing_file(self, tmp_path):
        settings = SimpleNamespace(
            learning_config_path=tmp_path / "absent.json",
            course_overrides_path=None,
            pacing_mode="normal_mode",
        )
        with pytest.raises(ConfigError, match="not found"):
            ConfigResolver.from_settings(settings)
