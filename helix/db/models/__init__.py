# SQLAlchemy models
from .base import Base
from .progress import (
    HelixStateRow,
    LearnerBaselineRow,
    LearningSessionRow,
    LegoProgressRow,
    ResponseMetricRow,
    SpikeEventRow,
)

__all__ = [
    "Base",
    "HelixStateRow",
    "LearnerBaselineRow",
    "LearningSessionRow",
    "LegoProgressRow",
    "ResponseMetricRow",
    "SpikeEventRow",
]
