"""Core interfaces and data structures for the recognition engine.

This module defines the abstract interfaces (Protocols) and data classes
shared by the engines, the services and the cloud offload path.

Components depend on these abstractions rather than on concrete engines, so
the SCRFD fast detector and the dlib deep recognizer can be swapped for
in-memory fakes in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
    runtime_checkable,
)

import numpy as np

if TYPE_CHECKING:
    from rostercheck.assets.manifest import AssetBundle

# Deep-recognizer descriptor dimensionality (dlib ResNet face recognition model)
DEEP_DESCRIPTOR_DIM = 128

UNKNOWN_LABEL = "unknown"


class EngineState(str, Enum):
    """Lifecycle of a model source or engine."""

    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class DetectionBox:
    """Detected face in source-frame pixel units.

    Attributes:
        x: Left edge x-coordinate (pixels)
        y: Top edge y-coordinate (pixels)
        width: Box width (pixels)
        height: Box height (pixels)
        score: Detection confidence score (0.0 to 1.0)
    """

    x: float
    y: float
    width: float
    height: float
    score: float

    def __post_init__(self) -> None:
        """Validate box data after initialization."""
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Box dimensions must be >= 0, got {self.width}x{self.height}"
            )
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Detection score must be in [0, 1], got {self.score}")

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def from_corners(
        cls,
        x1: float,
        y1: float,
        x2: float,
        y2: float,
        score: float,
        frame_shape: Optional[Tuple[int, ...]] = None,
    ) -> DetectionBox:
        """Build a box from corner coordinates, clamped to the frame if given.

        Detector scores outside [0, 1] (e.g. SVM margins) are clipped.
        """
        if frame_shape is not None:
            h, w = frame_shape[:2]
            x1 = max(0.0, min(float(x1), w - 1))
            y1 = max(0.0, min(float(y1), h - 1))
            x2 = max(0.0, min(float(x2), w - 1))
            y2 = max(0.0, min(float(y2), h - 1))
        return cls(
            x=float(x1),
            y=float(y1),
            width=max(0.0, float(x2) - float(x1)),
            height=max(0.0, float(y2) - float(y1)),
            score=float(np.clip(score, 0.0, 1.0)),
        )

    def as_ltrb(self) -> Tuple[int, int, int, int]:
        """Integer (left, top, right, bottom) corners."""
        return (
            int(round(self.x)),
            int(round(self.y)),
            int(round(self.right)),
            int(round(self.bottom)),
        )


class QualityReason(str, Enum):
    """Why the quality gate rejected a face."""

    TOO_FAR = "TOO_FAR"
    TOO_CLOSE = "TOO_CLOSE"


@dataclass(frozen=True)
class QualityVerdict:
    """Outcome of the quality gate for one detected face.

    Attributes:
        accepted: True if the face may proceed to descriptor extraction
        ratio: Face width divided by frame width
        reason_code: Rejection reason, None when accepted
        prompt: Short instruction for the person in front of the camera
    """

    accepted: bool
    ratio: float
    reason_code: Optional[QualityReason] = None
    prompt: str = ""


@dataclass(frozen=True)
class MatchResult:
    """Verdict of the matcher for one query descriptor."""

    label: str
    distance: float

    @property
    def is_known(self) -> bool:
        return self.label != UNKNOWN_LABEL


@dataclass(frozen=True)
class NoFaceResult:
    """Valid negative: the remote pipeline found no face in the frame."""

    message: str = ""


@dataclass(frozen=True)
class DeepDetection:
    """Result of the deep pipeline on one frame.

    Attributes:
        box: Detected face
        verdict: Quality verdict, None when no gate was applied
        descriptor: 128-D descriptor, None when the gate rejected the face
    """

    box: DetectionBox
    verdict: Optional[QualityVerdict]
    descriptor: Optional[np.ndarray]

    @property
    def accepted(self) -> bool:
        return self.descriptor is not None


# Storage shape of a descriptor: {"0": v0, "1": v1, ...} or a plain sequence
DescriptorRecord = Union[Mapping[str, Any], Sequence[float], np.ndarray]


@dataclass(frozen=True)
class EnrolledIdentity:
    """Collaborator-owned identity record.

    Attributes:
        id: Opaque identity id
        descriptor: Stored descriptor in storage shape, or None if never captured
    """

    id: str
    descriptor: Optional[DescriptorRecord] = None


@runtime_checkable
class FastDetector(Protocol):
    """Protocol for the lightweight detector used for continuous tracking.

    Its boxes feed UI feedback and the quality gate only; they never reach
    the matcher.
    """

    name: ClassVar[str]
    required_assets: ClassVar[Tuple[str, ...]]

    def load(self, bundle: AssetBundle, accelerated: bool) -> str:
        """Load model weights from the bundle.

        Args:
            bundle: Resolved asset bundle
            accelerated: Use the hardware-accelerated backend; raise if unavailable

        Returns:
            Name of the backend actually in use.
        """
        ...

    def detect(self, frame_bgr: np.ndarray) -> Optional[DetectionBox]:
        """Return the most prominent face in the frame, or None."""
        ...


@runtime_checkable
class DeepRecognizer(Protocol):
    """Protocol for the identity-grade detect + landmark + descriptor pipeline."""

    name: ClassVar[str]
    required_assets: ClassVar[Tuple[str, ...]]
    descriptor_dim: int

    def load(self, bundle: AssetBundle, accelerated: bool) -> str:
        """Load model weights; see FastDetector.load."""
        ...

    def detect(self, frame_bgr: np.ndarray) -> Optional[DetectionBox]:
        """Return the most confident face in the frame, or None."""
        ...

    def describe(self, frame_bgr: np.ndarray, box: DetectionBox) -> np.ndarray:
        """Compute the descriptor of the face inside ``box``.

        Returns:
            Descriptor vector, shape [descriptor_dim], dtype float32.
        """
        ...
