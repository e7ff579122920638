from .grading import GradingAccessGuard, GradingDecision, GradingService
from .lifecycle import SessionLifecycle
from .reassignment import ReassignmentService

__all__ = [
    "GradingAccessGuard",
    "GradingDecision",
    "GradingService",
    "ReassignmentService",
    "SessionLifecycle",
]
