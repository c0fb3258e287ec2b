"""Frame-quality admission gate.

Decides whether a detected face is large enough, and not too large, to be
worth a descriptor extraction. Faces that are too far away produce unstable
descriptors; faces that are too close get clipped by the frame edges.
"""

from __future__ import annotations

from rostercheck.core.interfaces import DetectionBox, QualityReason, QualityVerdict

MIN_FACE_RATIO = 0.22
MAX_FACE_RATIO = 0.60

PROMPT_TOO_FAR = "Move closer to the camera"
PROMPT_TOO_CLOSE = "Move back a little"
PROMPT_OK = "Hold still"


class QualityGate:
    """Admission control based on face width relative to frame width.

    Both bounds are inclusive-accept: a ratio exactly equal to either bound
    passes.

    Example:
        >>> gate = QualityGate()
        >>> gate.evaluate(DetectionBox(0, 0, 100, 100, 0.9), frame_width=1000).reason_code
        <QualityReason.TOO_FAR: 'TOO_FAR'>
    """

    def __init__(self, min_ratio: float = MIN_FACE_RATIO, max_ratio: float = MAX_FACE_RATIO):
        if not 0.0 < min_ratio < max_ratio <= 1.0:
            raise ValueError(
                f"Ratio bounds must satisfy 0 < min < max <= 1, got {min_ratio}, {max_ratio}"
            )
        self.min_ratio = min_ratio
        self.max_ratio = max_ratio

    def evaluate(self, box: DetectionBox, frame_width: float) -> QualityVerdict:
        """Evaluate one detected face.

        Args:
            box: Detected face in frame pixel units
            frame_width: Width of the frame the box was detected in

        Returns:
            QualityVerdict with the computed ratio.

        Raises:
            ValueError: If frame_width is not positive.
        """
        if frame_width <= 0:
            raise ValueError(f"Frame width must be > 0, got {frame_width}")

        ratio = box.width / frame_width

        if ratio < self.min_ratio:
            return QualityVerdict(False, ratio, QualityReason.TOO_FAR, PROMPT_TOO_FAR)
        if ratio > self.max_ratio:
            return QualityVerdict(False, ratio, QualityReason.TOO_CLOSE, PROMPT_TOO_CLOSE)
        return QualityVerdict(True, ratio, None, PROMPT_OK)

    def __call__(self, box: DetectionBox, frame_width: float) -> QualityVerdict:
        return self.evaluate(box, frame_width)

    def __repr__(self) -> str:
        return f"QualityGate(min_ratio={self.min_ratio}, max_ratio={self.max_ratio})"
