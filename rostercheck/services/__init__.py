"""High-level services for the check-in pipeline.

This package contains the quality gate, the engine orchestrator and the
check-in and enrollment services built on top of them.
"""

from rostercheck.services.checkin import CheckInResult, CheckInService, CheckInStatus, TrackingFeedback
from rostercheck.services.enrollment import EnrollmentCapture, EnrollmentService
from rostercheck.services.orchestrator import DetectionOrchestrator, EngineSlot
from rostercheck.services.quality import QualityGate

__all__ = [
    "CheckInResult",
    "CheckInService",
    "CheckInStatus",
    "DetectionOrchestrator",
    "EngineSlot",
    "EnrollmentCapture",
    "EnrollmentService",
    "QualityGate",
    "TrackingFeedback",
]
