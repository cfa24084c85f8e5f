"""
Learning Configuration - every scheduler parameter in one validated tree.

Two-level hierarchy: global defaults (optionally overridden from JSON and by
the active pacing preset) with a per-course overlay on top. The resolver
merges section by section and is consulted once per session; the resolved
LearningConfig is then held for the whole sitting.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from helix.core.errors import ConfigError


class HelixConfig(BaseModel):
    """Triple-helix thread layout."""

    thread_count: Literal[3] = 3
    initial_seed_count: int | None = Field(default=None, ge=1)  # None = deal every seed
    interleave_policy: Literal["round_robin", "weighted"] = "round_robin"


class RepetitionConfig(BaseModel):
    """Fibonacci spacing and retirement."""

    fibonacci_sequence: list[int] = Field(default_factory=lambda: [0, 1, 1, 2, 3, 5, 8, 13])
    fibonacci_cap: int = 7
    retirement_reps: int = Field(default=10, ge=0)
    retired_review_gap: int = Field(default=55, ge=1)

    @field_validator("fibonacci_sequence")
    @classmethod
    def _sequence_is_non_decreasing(cls, value: list[int]) -> list[int]:
        if not value or value[0] != 0:
            raise ValueError("fibonacci_sequence must start at 0")
        if any(b < a for a, b in zip(value, value[1:])):
            raise ValueError("fibonacci_sequence must be non-decreasing")
        return value

    @model_validator(mode="after")
    def _cap_indexes_sequence(self) -> RepetitionConfig:
        if not 0 <= self.fibonacci_cap < len(self.fibonacci_sequence):
            raise ValueError(
                f"fibonacci_cap {self.fibonacci_cap} is not an index into a "
                f"sequence of length {len(self.fibonacci_sequence)}"
            )
        return self


class PacingConfig(BaseModel):
    """Playback pace and how much review material is mixed in."""

    playback_speed: float = Field(default=1.0, gt=0)
    pause_base_ms: int = Field(default=1500, ge=0)
    pause_multiplier: float = Field(default=1.0, gt=0)
    min_pause_ms: int = Field(default=3000, ge=0)
    max_pause_ms: int = Field(default=8000, ge=0)
    ms_per_extra_word: int = Field(default=300, ge=0)
    spaced_rep_fraction: float = Field(default=1.0, ge=0, le=1)
    debut_phrases_fraction: float = Field(default=1.0, ge=0, le=1)
    skip_voice2: bool = False

    @model_validator(mode="after")
    def _bounds_ordered(self) -> PacingConfig:
        if self.min_pause_ms > self.max_pause_ms:
            raise ValueError("min_pause_ms must not exceed max_pause_ms")
        return self


class SpikeConfig(BaseModel):
    """Latency spike detection."""

    enabled: bool = True
    sensitivity_k: float = Field(default=2.0, gt=0)
    breakdown_k: float = Field(default=3.5, gt=0)
    rolling_window_size: int = Field(default=10, ge=1)
    min_phrase_length: int = Field(default=5, ge=1)
    cooldown_items: int = Field(default=0, ge=0)
    pause_extension_factor: float = Field(default=0.3, ge=0)
    pause_extension_items: int = Field(default=3, ge=0)
    speedup_margin: float = Field(default=0.15, ge=0, lt=1)
    # magnitude: breakdown past breakdown_k; repeat/breakdown: fixed; alternate: cycle the sequence
    response_strategy: Literal["magnitude", "repeat", "breakdown", "alternate"] = "magnitude"
    alternate_sequence: list[Literal["repeat", "breakdown"]] = Field(
        default_factory=lambda: ["repeat", "breakdown"], min_length=1
    )

    @model_validator(mode="after")
    def _breakdown_above_repeat(self) -> SpikeConfig:
        if self.breakdown_k < self.sensitivity_k:
            raise ValueError("breakdown_k must be >= sensitivity_k")
        return self


class CalibrationConfig(BaseModel):
    """Learner baseline calibration."""

    calibration_items: int = Field(default=10, ge=2)
    min_latency_stddev: float = Field(default=25.0, ge=0)
    min_duration_stddev: float = Field(default=100.0, ge=0)
    ewma_alpha: float = Field(default=0.1, gt=0, le=1)
    default_latency_mean: float = Field(default=300.0, ge=0)
    default_latency_stddev: float = Field(default=100.0, ge=0)


class SessionStructureConfig(BaseModel):
    """Production vs listening split by introduced-seed milestone."""

    early_production_pct: int = Field(default=90, ge=0, le=100)
    mid_production_pct: int = Field(default=70, ge=0, le=100)
    late_production_pct: int = Field(default=50, ge=0, le=100)
    early_threshold: int = Field(default=50, ge=0)
    mid_threshold: int = Field(default=150, ge=0)
    thread_weights: list[float] = Field(default_factory=lambda: [1.0, 1.0, 1.0])

    @field_validator("thread_weights")
    @classmethod
    def _three_positive_weights(cls, value: list[float]) -> list[float]:
        if len(value) != 3 or any(w <= 0 for w in value):
            raise ValueError("thread_weights needs three positive weights")
        return value

    def production_pct(self, introduced_seeds: int) -> int:
        """Production share for a learner who has introduced this many seeds."""
        if introduced_seeds < self.early_threshold:
            return self.early_production_pct
        if introduced_seeds < self.mid_threshold:
            return self.mid_production_pct
        return self.late_production_pct


class LearningConfig(BaseModel):
    """Complete scheduler configuration."""

    helix: HelixConfig = Field(default_factory=HelixConfig)
    repetition: RepetitionConfig = Field(default_factory=RepetitionConfig)
    pacing: PacingConfig = Field(default_factory=PacingConfig)
    spike: SpikeConfig = Field(default_factory=SpikeConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    session_structure: SessionStructureConfig = Field(default_factory=SessionStructureConfig)


# Rows of the algorithm_config table
PACING_PRESETS: dict[str, dict[str, Any]] = {
    "normal_mode": {
        "playback_speed": 1.0,
        "pause_base_ms": 1500,
        "pause_multiplier": 1.0,
        "min_pause_ms": 3000,
        "max_pause_ms": 8000,
        "spaced_rep_fraction": 1.0,
        "debut_phrases_fraction": 1.0,
        "skip_voice2": False,
    },
    "turbo_boost": {
        "playback_speed": 1.25,
        "pause_base_ms": 500,
        "pause_multiplier": 0.5,
        "min_pause_ms": 800,
        "max_pause_ms": 2000,
        "spaced_rep_fraction": 0.33,
        "debut_phrases_fraction": 0.5,
        "skip_voice2": False,
    },
}


def merge_config(base: LearningConfig, overrides: dict[str, dict[str, Any]]) -> LearningConfig:
    """
    Overlay section-level overrides onto a config.

    Keys inside a section replace the base values; untouched keys keep them.

    Raises:
        ConfigError: unknown section or a merged section fails validation
    """
    merged = base.model_dump()
    for section, values in overrides.items():
        if section not in merged:
            raise ConfigError(f"Unknown learning-config section: {section}")
        if not isinstance(values, dict):
            raise ConfigError(f"Section {section} must be a mapping")
        merged[section] = {**merged[section], **values}
    try:
        return LearningConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


class ConfigResolver:
    """
    Global defaults with a per-course overlay.

    Usage:
        resolver = ConfigResolver.from_settings(get_settings())
        config = resolver.resolve("spa_for_eng")
    """

    def __init__(
        self,
        global_overrides: dict[str, dict[str, Any]] | None = None,
        course_overrides: dict[str, dict[str, dict[str, Any]]] | None = None,
        pacing_mode: str = "normal_mode",
    ):
        if pacing_mode not in PACING_PRESETS:
            raise ConfigError(f"Unknown pacing mode: {pacing_mode}")

        base = merge_config(LearningConfig(), {"pacing": PACING_PRESETS[pacing_mode]})
        self._global = merge_config(base, global_overrides or {})
        self._course_overrides = course_overrides or {}

    @classmethod
    def from_settings(cls, settings: Any) -> ConfigResolver:
        """Build a resolver from application Settings (JSON override files are optional)."""
        global_overrides = _read_json(settings.learning_config_path)
        course_overrides = _read_json(settings.course_overrides_path)
        return cls(global_overrides, course_overrides, settings.pacing_mode)

    @property
    def global_config(self) -> LearningConfig:
        return self._global

    def resolve(self, course_code: str) -> LearningConfig:
        """Resolve the effective config for one course."""
        overrides = self._course_overrides.get(course_code)
        if not overrides:
            return self._global
        logger.debug(f"Applying course overrides for {course_code}: {sorted(overrides)}")
        return merge_config(self._global, overrides)


def _read_json(path: Path | None) -> dict:
    if path is None:
        return {}
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return data
