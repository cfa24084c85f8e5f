"""
Unit tests for pause computation and the production/listening split.
"""

import pytest

from helix.core.learning_config import PACING_PRESETS, PacingConfig, SessionStructureConfig
from helix.session.pacing import CycleMode, compute_pause_ms, cycle_mode


class TestPause:
    """base + per-word extension, scaled, clamped."""

    @pytest.mark.parametrize(
        "words,expected",
        [(1, 3000), (3, 3000), (10, 3600), (20, 6600), (30, 8000)],
    )
    def test_normal_mode(self, words, expected):
        assert compute_pause_ms(words, PacingConfig()) == expected

    def test_multiplier_and_extension(self):
        pacing = PacingConfig(pause_multiplier=1.0)
        assert compute_pause_ms(15, pacing, extension=1.3) == 6630

    def test_turbo_shorter_floor(self):
        turbo = PacingConfig(**PACING_PRESETS["turbo_boost"])
        assert compute_pause_ms(1, turbo) < compute_pause_ms(1, PacingConfig())

    def test_min_above_max_rejected(self):
        with pytest.raises(ValueError):
            PacingConfig(min_pause_ms=9000, max_pause_ms=8000)


class TestCycleMode:
    """Production percentage holds over any 100 consecutive cycles."""

    def test_cycle_zero_is_production(self):
        assert cycle_mode(0, 0, SessionStructureConfig()) == CycleMode.PRODUCTION

    @pytest.mark.parametrize("seeds,expected", [(0, 90), (60, 70), (200, 50)])
    def test_share_over_hundred_cycles(self, seeds, expected):
        structure = SessionStructureConfig()
        for start in (0, 37):
            modes = [cycle_mode(c, seeds, structure) for c in range(start, start + 100)]
            assert modes.count(CycleMode.PRODUCTION) == expected

    def test_fifty_percent_alternates(self):
        structure = SessionStructureConfig()
        modes = [cycle_mode(c, 500, structure) for c in range(4)]
        assert modes == [
            CycleMode.PRODUCTION,
            CycleMode.LISTENING,
            CycleMode.PRODUCTION,
            CycleMode.LISTENING,
        ]

    def test_all_production(self):
        structure = SessionStructureConfig(early_production_pct=100)
        assert all(cycle_mode(c, 0, structure) == CycleMode.PRODUCTION for c in range(50))
