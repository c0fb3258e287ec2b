"""Enrollment service for registering new identities.

This module captures the reference descriptor of a new person: deep
detection, a final quality check, and a 1:N duplicate check against every
identity already enrolled. Persisting the record is up to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from rostercheck.core.errors import InferenceFailure
from rostercheck.core.interfaces import MatchResult, QualityVerdict
from rostercheck.core.logging_config import get_logger
from rostercheck.core.utils import descriptor_to_record
from rostercheck.services.checkin import CheckInService

logger = get_logger(__name__)


@dataclass(frozen=True)
class EnrollmentCapture:
    """Result of one enrollment capture attempt.

    Attributes:
        success: True if a new descriptor was captured
        descriptor: Captured descriptor, shape [128], on success
        record: Storage shape of the descriptor {"0": v0, ..., "127": v127}
        verdict: Quality verdict of the captured face
        duplicate_of: Existing identity the face matched, if any
        message: Short user-facing message
    """

    success: bool
    descriptor: Optional[np.ndarray] = None
    record: Optional[Dict[str, float]] = None
    verdict: Optional[QualityVerdict] = None
    duplicate_of: Optional[MatchResult] = None
    message: str = ""


class EnrollmentService:
    """Service for capturing the reference descriptor of a new person.

    Enrollment always uses the local deep engine. The duplicate check runs
    against the check-in service's current matcher, so a person cannot be
    registered twice under different ids.

    Example:
        >>> service = EnrollmentService(checkin)
        >>> capture = await service.capture(frame)
        >>> if capture.success:
        ...     store.save(person_id, capture.record)
        ... else:
        ...     print(capture.message)
    """

    def __init__(self, checkin: CheckInService):
        self.checkin = checkin
        self.orchestrator = checkin.orchestrator
        self.gate = checkin.gate

    async def capture(self, frame_bgr: np.ndarray) -> EnrollmentCapture:
        """Capture an enrollment descriptor from a single frame.

        Args:
            frame_bgr: Input frame in BGR format [H, W, 3]

        Returns:
            EnrollmentCapture; on failure ``message`` says what to fix.

        Raises:
            EngineNotReady: If the deep engine is not initialized.
        """
        try:
            detection = await self.orchestrator.detect_deep(frame_bgr, gate=self.gate, wait=True)
        except InferenceFailure as e:
            logger.warning(f"Enrollment capture failed: {e}")
            return EnrollmentCapture(success=False, message="Could not process the frame, please try again")

        if detection is None:
            return EnrollmentCapture(success=False, message="No face detected")

        if not detection.accepted:
            verdict = detection.verdict
            return EnrollmentCapture(
                success=False,
                verdict=verdict,
                message=verdict.prompt if verdict else "Face rejected",
            )

        matcher = self.checkin.matcher
        if matcher is not None:
            match = matcher.match(detection.descriptor)
            if match.is_known:
                logger.info(
                    f"Enrollment blocked: face already enrolled as '{match.label}' "
                    f"(distance={match.distance:.4f})"
                )
                return EnrollmentCapture(
                    success=False,
                    verdict=detection.verdict,
                    duplicate_of=match,
                    message=f"This face is already enrolled as {match.label}",
                )

        logger.info("Enrollment descriptor captured")
        return EnrollmentCapture(
            success=True,
            descriptor=detection.descriptor,
            record=descriptor_to_record(detection.descriptor),
            verdict=detection.verdict,
            message="Face captured",
        )
