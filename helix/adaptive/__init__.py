"""Latency-based adaptation: baseline calibration and spike classification."""
from .baseline import BaselineCalibrator, CalibrationStatus, LearnerBaseline
from .latency import LatencyClassifier, SessionLatencyTracker, SpikeResponse

__all__ = [
    "BaselineCalibrator",
    "CalibrationStatus",
    "LatencyClassifier",
    "LearnerBaseline",
    "SessionLatencyTracker",
    "SpikeResponse",
]
