"""
Baseline Calibrator.

A learner's baseline is the mean/stddev of normalized response latency
(ms per target character) and of duration delta (spoken duration minus the
target audio's duration). It is established over a calibration window of
timed items and afterwards drifts with an exponentially weighted update that
is applied once per session, never mid-session.

had_timing_data is only set when real latency samples went into the numbers;
an uncalibrated learner is never given a silent all-zero baseline.
"""
from __future__ import annotations

import statistics
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from loguru import logger

from helix.core.learning_config import CalibrationConfig


class CalibrationStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    CALIBRATED = "calibrated"


@dataclass(frozen=True)
class TimingSample:
    """One timed production response."""

    normalized_latency: float
    duration_delta: float | None = None


@dataclass(frozen=True)
class LearnerBaseline:
    """Long-term latency statistics for one learner."""

    learner_id: str
    status: CalibrationStatus = CalibrationStatus.NOT_STARTED
    latency_mean: float = 0.0
    latency_stddev: float = 0.0
    duration_delta_mean: float = 0.0
    duration_delta_stddev: float = 0.0
    had_timing_data: bool = False
    sample_count: int = 0
    pending_latencies: tuple[float, ...] = ()
    pending_durations: tuple[float, ...] = ()
    calibrated_at: datetime | None = None

    @property
    def is_calibrated(self) -> bool:
        return self.status == CalibrationStatus.CALIBRATED and self.had_timing_data


@dataclass
class SessionSamples:
    """Non-spike samples gathered during one session, folded in at session end."""

    latencies: list[float] = field(default_factory=list)
    durations: list[float] = field(default_factory=list)

    def add(self, sample: TimingSample) -> None:
        self.latencies.append(sample.normalized_latency)
        if sample.duration_delta is not None:
            self.durations.append(sample.duration_delta)


class BaselineCalibrator:
    """
    Calibrates and maintains learner baselines.

    Usage:
        calibrator = BaselineCalibrator(config.calibration)
        baseline = calibrator.add_calibration_sample(baseline, sample)
        ...
        baseline = calibrator.fold_session(baseline, session_samples)
    """

    def __init__(self, config: CalibrationConfig | None = None):
        self.config = config or CalibrationConfig()

    def default_baseline(self, learner_id: str) -> LearnerBaseline:
        """Fixed fallback used while no timing data exists (spike detection off)."""
        return LearnerBaseline(
            learner_id=learner_id,
            latency_mean=self.config.default_latency_mean,
            latency_stddev=self.config.default_latency_stddev,
        )

    def with_defaults(self, baseline: LearnerBaseline) -> LearnerBaseline:
        """Uncalibrated baselines carry the fixed defaults; calibration state is kept."""
        if baseline.is_calibrated:
            return baseline
        return replace(
            baseline,
            latency_mean=self.config.default_latency_mean,
            latency_stddev=self.config.default_latency_stddev,
        )

    def add_calibration_sample(
        self, baseline: LearnerBaseline, sample: TimingSample
    ) -> LearnerBaseline:
        """
        Add one timed item to the calibration window; completes calibration
        once calibration_items samples are in.
        """
        if baseline.status == CalibrationStatus.CALIBRATED:
            return baseline

        latencies = baseline.pending_latencies + (sample.normalized_latency,)
        durations = baseline.pending_durations
        if sample.duration_delta is not None:
            durations = durations + (sample.duration_delta,)

        if len(latencies) < self.config.calibration_items:
            return replace(
                baseline,
                status=CalibrationStatus.IN_PROGRESS,
                pending_latencies=latencies,
                pending_durations=durations,
            )

        latency_mean = statistics.fmean(latencies)
        latency_stddev = max(statistics.pstdev(latencies), self.config.min_latency_stddev)
        if len(durations) >= 2:
            duration_mean = statistics.fmean(durations)
            duration_stddev = max(statistics.pstdev(durations), self.config.min_duration_stddev)
        else:
            duration_mean, duration_stddev = 0.0, self.config.min_duration_stddev

        logger.info(
            f"Calibrated {baseline.learner_id}: latency {latency_mean:.1f} +/- {latency_stddev:.1f} ms/char "
            f"over {len(latencies)} items"
        )
        return replace(
            baseline,
            status=CalibrationStatus.CALIBRATED,
            latency_mean=latency_mean,
            latency_stddev=latency_stddev,
            duration_delta_mean=duration_mean,
            duration_delta_stddev=duration_stddev,
            had_timing_data=True,
            sample_count=len(latencies),
            pending_latencies=(),
            pending_durations=(),
            calibrated_at=datetime.now(timezone.utc),
        )

    def fold_session(self, baseline: LearnerBaseline, samples: SessionSamples) -> LearnerBaseline:
        """
        EWMA update of a calibrated baseline with one session's non-spike samples.

        Variance is tracked with the same weighting (West's EW variance),
        floored at the configured minimum stddev.
        """
        if not baseline.is_calibrated or not samples.latencies:
            return baseline

        alpha = self.config.ewma_alpha
        mean, stddev = _ewma(
            baseline.latency_mean, baseline.latency_stddev, samples.latencies, alpha,
            self.config.min_latency_stddev,
        )
        d_mean, d_stddev = baseline.duration_delta_mean, baseline.duration_delta_stddev
        if samples.durations:
            d_mean, d_stddev = _ewma(
                d_mean, d_stddev, samples.durations, alpha, self.config.min_duration_stddev
            )

        logger.debug(
            f"Baseline drift for {baseline.learner_id}: {baseline.latency_mean:.1f} -> {mean:.1f} ms/char"
        )
        return replace(
            baseline,
            latency_mean=mean,
            latency_stddev=stddev,
            duration_delta_mean=d_mean,
            duration_delta_stddev=d_stddev,
            sample_count=baseline.sample_count + len(samples.latencies),
        )


def _ewma(
    mean: float, stddev: float, values: list[float], alpha: float, floor: float
) -> tuple[float, float]:
    variance = stddev ** 2
    for value in values:
        diff = value - mean
        increment = alpha * diff
        mean += increment
        variance = (1 - alpha) * (variance + diff * increment)
    return mean, max(variance ** 0.5, floor)
