"""Session orchestration."""
from .orchestrator import AdaptationResult, CourseComplete, CyclePayload, SessionOrchestrator

__all__ = ["AdaptationResult", "CourseComplete", "CyclePayload", "SessionOrchestrator"]
