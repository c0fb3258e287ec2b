"""Check-in service: from a camera frame to an identity verdict.

Pipeline per frame:
1. Quality gate on the detected face
2. Descriptor from the local deep engine, or from the cloud endpoint
3. Nearest-neighbor match against the enrolled identities

The fast engine runs alongside purely for tracking feedback; its boxes are
never matched.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union

import numpy as np

from rostercheck.backends.dlib.matcher import DEFAULT_THRESHOLD, DescriptorMatcher, build_matcher
from rostercheck.cloud.client import CloudOffloadClient
from rostercheck.core.errors import InferenceFailure, RateLimitExceeded, TransportFailure
from rostercheck.core.interfaces import (
    DetectionBox,
    EnrolledIdentity,
    MatchResult,
    NoFaceResult,
    QualityVerdict,
)
from rostercheck.core.logging_config import get_logger
from rostercheck.services.orchestrator import DetectionOrchestrator
from rostercheck.services.quality import QualityGate

logger = get_logger(__name__)

MSG_MATCHED = "Identity verified"
MSG_UNKNOWN = "Face not recognized"
MSG_NO_FACE = "No face detected"
MSG_NO_IDENTITIES = "No enrolled identities to compare against"
MSG_RETRY = "Could not process the frame, please try again"
MSG_BUSY = "Service is busy, please try again in a few minutes"


class CheckInStatus(str, Enum):
    MATCHED = "matched"
    UNKNOWN = "unknown"
    NO_FACE = "no_face"
    REJECTED = "rejected"
    FAILED = "failed"
    NO_IDENTITIES = "no_identities"


@dataclass(frozen=True)
class CheckInResult:
    """Outcome of one check-in attempt.

    Attributes:
        status: What happened to the frame
        match: Matcher verdict (matched and unknown only)
        box: Face box the verdict refers to, when one was detected
        verdict: Quality verdict, when the gate ran
        source: Descriptor source, "local" or "cloud"
        message: Short user-facing message

    Example:
        >>> result = await service.identify(frame)
        >>> if result.status is CheckInStatus.MATCHED:
        ...     print(f"{result.match.label}: {result.match.distance:.3f}")
    """

    status: CheckInStatus
    match: Optional[MatchResult] = None
    box: Optional[DetectionBox] = None
    verdict: Optional[QualityVerdict] = None
    source: str = "local"
    message: str = ""

    def __repr__(self) -> str:
        label = self.match.label if self.match else None
        return f"CheckInResult(status={self.status.value}, label={label}, source={self.source})"


@dataclass(frozen=True)
class TrackingFeedback:
    """Fast-path feedback for the capture UI."""

    box: Optional[DetectionBox]
    verdict: Optional[QualityVerdict]

    @property
    def prompt(self) -> str:
        if self.box is None:
            return MSG_NO_FACE
        return self.verdict.prompt if self.verdict else ""


class CheckInService:
    """Identify people at check-in.

    The matcher handle is rebuilt in full and swapped atomically whenever the
    enrolled set changes; an identify() call in flight keeps the handle it
    started with.

    Attributes:
        orchestrator: Engine orchestrator (initialized by the caller)
        gate: Quality gate
        cloud: Cloud offload client, required when use_cloud is set
        use_cloud: Take descriptors from the cloud endpoint instead of the deep engine
        cloud_quality_gate: Gate frames with the fast engine's box before offloading
        threshold: Match threshold shared by the local and cloud paths
    """

    def __init__(
        self,
        orchestrator: DetectionOrchestrator,
        gate: QualityGate,
        cloud: Optional[CloudOffloadClient] = None,
        use_cloud: bool = False,
        cloud_quality_gate: bool = True,
        threshold: float = DEFAULT_THRESHOLD,
    ):
        if use_cloud and cloud is None:
            raise ValueError("use_cloud requires a CloudOffloadClient")

        self.orchestrator = orchestrator
        self.gate = gate
        self.cloud = cloud
        self.use_cloud = use_cloud
        self.cloud_quality_gate = cloud_quality_gate
        self.threshold = threshold
        self._matcher: Optional[DescriptorMatcher] = None

        logger.info(
            f"Initialized CheckInService (source={'cloud' if use_cloud else 'local'}, "
            f"threshold={threshold})"
        )

    @property
    def matcher(self) -> Optional[DescriptorMatcher]:
        return self._matcher

    def replace_identities(self, identities: Iterable[EnrolledIdentity]) -> int:
        """Rebuild the matcher from the full enrolled set and swap it in.

        Returns:
            Number of identities with a usable descriptor.

        Raises:
            ValueError: If a stored descriptor is malformed (the previous
                matcher stays in place).
        """
        matcher = build_matcher(identities, threshold=self.threshold)
        self._matcher = matcher
        count = len(matcher.labels) if matcher else 0
        logger.info(f"Matcher replaced: {count} enrolled identities")
        return count

    async def track(self, frame_bgr: np.ndarray) -> TrackingFeedback:
        """Fast-path detection plus quality verdict for UI feedback.

        Frames arriving while the fast engine is busy are dropped and reported
        as having no box.
        """
        try:
            box = await self.orchestrator.detect_fast(frame_bgr, wait=False)
        except InferenceFailure as e:
            logger.debug(f"Tracking frame skipped: {e}")
            return TrackingFeedback(box=None, verdict=None)

        if box is None:
            return TrackingFeedback(box=None, verdict=None)
        return TrackingFeedback(box=box, verdict=self.gate.evaluate(box, frame_bgr.shape[1]))

    async def identify(self, frame_bgr: np.ndarray) -> CheckInResult:
        """Identify the person in a frame.

        Per-frame failures become a FAILED result; the service stays usable
        for the next frame.

        Raises:
            EngineNotReady: If a required engine is not initialized.
        """
        matcher = self._matcher
        source = "cloud" if self.use_cloud else "local"

        if matcher is None:
            return CheckInResult(CheckInStatus.NO_IDENTITIES, source=source, message=MSG_NO_IDENTITIES)

        if self.use_cloud:
            outcome = await self._cloud_descriptor(frame_bgr)
        else:
            outcome = await self._local_descriptor(frame_bgr)

        if isinstance(outcome, CheckInResult):
            return outcome

        descriptor, box, verdict = outcome
        match = matcher.match(descriptor)

        if match.is_known:
            logger.info(f"Check-in matched '{match.label}' (distance={match.distance:.4f}, {source})")
            return CheckInResult(CheckInStatus.MATCHED, match, box, verdict, source, MSG_MATCHED)

        logger.info(f"Check-in unknown face (nearest distance={match.distance:.4f}, {source})")
        return CheckInResult(CheckInStatus.UNKNOWN, match, box, verdict, source, MSG_UNKNOWN)

    async def _local_descriptor(
        self, frame_bgr: np.ndarray
    ) -> Union[CheckInResult, tuple]:
        try:
            detection = await self.orchestrator.detect_deep(frame_bgr, gate=self.gate, wait=True)
        except InferenceFailure as e:
            logger.warning(f"Local check-in failed: {e}")
            return CheckInResult(CheckInStatus.FAILED, message=MSG_RETRY)

        if detection is None:
            return CheckInResult(CheckInStatus.NO_FACE, message=MSG_NO_FACE)

        if not detection.accepted:
            verdict = detection.verdict
            return CheckInResult(
                CheckInStatus.REJECTED,
                box=detection.box,
                verdict=verdict,
                message=verdict.prompt if verdict else MSG_RETRY,
            )

        return detection.descriptor, detection.box, detection.verdict

    async def _cloud_descriptor(
        self, frame_bgr: np.ndarray
    ) -> Union[CheckInResult, tuple]:
        box: Optional[DetectionBox] = None
        verdict: Optional[QualityVerdict] = None

        if self.cloud_quality_gate:
            try:
                box = await self.orchestrator.detect_fast(frame_bgr, wait=True)
            except InferenceFailure as e:
                logger.warning(f"Pre-offload detection failed: {e}")
                return CheckInResult(CheckInStatus.FAILED, source="cloud", message=MSG_RETRY)

            if box is None:
                return CheckInResult(CheckInStatus.NO_FACE, source="cloud", message=MSG_NO_FACE)

            verdict = self.gate.evaluate(box, frame_bgr.shape[1])
            if not verdict.accepted:
                return CheckInResult(
                    CheckInStatus.REJECTED, box=box, verdict=verdict, source="cloud",
                    message=verdict.prompt,
                )

        try:
            result = await self.cloud.infer(frame_bgr)
        except RateLimitExceeded as e:
            logger.warning(f"Cloud check-in throttled: {e}")
            return CheckInResult(CheckInStatus.FAILED, box=box, verdict=verdict, source="cloud",
                                 message=MSG_BUSY)
        except TransportFailure as e:
            logger.warning(f"Cloud check-in failed: {e}")
            return CheckInResult(CheckInStatus.FAILED, box=box, verdict=verdict, source="cloud",
                                 message=MSG_RETRY)

        if isinstance(result, NoFaceResult):
            return CheckInResult(CheckInStatus.NO_FACE, box=box, verdict=verdict, source="cloud",
                                 message=result.message or MSG_NO_FACE)

        return result, box, verdict
