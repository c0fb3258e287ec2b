"""Dlib deep recognizer: face detection, 68-point landmarks and 128-D descriptors.

This is the identity-grade pipeline. Its descriptors are the only ones the
matcher accepts from the local path; the cloud endpoint runs the same
pipeline so both paths share one descriptor space.

Detection uses a primary and a secondary detector. When the primary finds
no face, the secondary gets one more try on the same frame:
- accelerated: CNN (MMOD) detector on CUDA, then HOG
- default: HOG without upsampling, then HOG upsampled once (smaller faces)

The CNN detector reports a confidence in [0, 1] while HOG reports an SVM
margin around 0, so each detector carries its own acceptance threshold.
"""

from __future__ import annotations

from typing import Callable, ClassVar, List, Optional, Tuple

import cv2
import dlib
import numpy as np

from rostercheck.assets.manifest import (
    CNN_DETECTOR_ASSET,
    LANDMARKS_ASSET,
    RECOGNITION_ASSET,
    AssetBundle,
)
from rostercheck.core.interfaces import DEEP_DESCRIPTOR_DIM, DetectionBox
from rostercheck.core.logging_config import get_logger

logger = get_logger(__name__)

# (rgb frame) -> list of (left, top, right, bottom, score)
_DetectFn = Callable[[np.ndarray], List[Tuple[int, int, int, int, float]]]
# detect function paired with its minimum score
_Detector = Tuple[_DetectFn, float]


def _hog_detector(upsample: int, threshold: float) -> _DetectFn:
    detector = dlib.get_frontal_face_detector()

    def detect(rgb: np.ndarray) -> List[Tuple[int, int, int, int, float]]:
        rects, scores, _idx = detector.run(rgb, upsample, threshold)
        return [
            (r.left(), r.top(), r.right(), r.bottom(), float(s))
            for r, s in zip(rects, scores)
        ]

    return detect


def _cnn_detector(model_path: str, upsample: int) -> _DetectFn:
    detector = dlib.cnn_face_detection_model_v1(model_path)

    def detect(rgb: np.ndarray) -> List[Tuple[int, int, int, int, float]]:
        return [
            (d.rect.left(), d.rect.top(), d.rect.right(), d.rect.bottom(), float(d.confidence))
            for d in detector(rgb, upsample)
        ]

    return detect


class DlibRecognizer:
    """Deep recognizer producing 128-D dlib ResNet descriptors.

    Attributes:
        min_confidence: Minimum CNN detector confidence for a face to be reported
        hog_threshold: Minimum HOG SVM score for a face to be reported
        num_jitters: Re-sampling count for descriptor computation (higher = slower, steadier)
        descriptor_dim: Descriptor dimension (128)
        backend: Name of the execution backend after load()

    Example:
        >>> recognizer = DlibRecognizer(min_confidence=0.4)
        >>> recognizer.load(bundle, accelerated=False)
        'cpu'
        >>> box = recognizer.detect(frame)
        >>> descriptor = recognizer.describe(frame, box)  # shape [128]
    """

    name: ClassVar[str] = "dlib"
    required_assets: ClassVar[Tuple[str, ...]] = (LANDMARKS_ASSET, RECOGNITION_ASSET)

    def __init__(self, min_confidence: float = 0.4, hog_threshold: float = 0.0, num_jitters: int = 1):
        self.min_confidence = min_confidence
        self.hog_threshold = hog_threshold
        self.num_jitters = num_jitters
        self.descriptor_dim = DEEP_DESCRIPTOR_DIM
        self.backend: Optional[str] = None

        self._primary: Optional[_Detector] = None
        self._secondary: Optional[_Detector] = None
        self._shape_predictor = None
        self._face_rec_model = None

    def load(self, bundle: AssetBundle, accelerated: bool) -> str:
        """Load detector, shape predictor and recognition model from the bundle.

        Args:
            bundle: Resolved asset bundle
            accelerated: Use the CUDA CNN detector; raise if dlib was built
                without CUDA or the bundle has no CNN detector

        Returns:
            "cuda" or "cpu".

        Raises:
            RuntimeError: If the requested backend is unavailable or a model
                fails to load.
        """
        if accelerated:
            if not getattr(dlib, "DLIB_USE_CUDA", False):
                raise RuntimeError("dlib was built without CUDA support")
            if not bundle.has(CNN_DETECTOR_ASSET):
                raise RuntimeError(f"Bundle has no '{CNN_DETECTOR_ASSET}' asset")

        logger.info(f"Loading dlib recognizer ({'cuda' if accelerated else 'cpu'})")

        try:
            if accelerated:
                primary = (
                    _cnn_detector(str(bundle.path(CNN_DETECTOR_ASSET)), upsample=0),
                    self.min_confidence,
                )
                secondary = (_hog_detector(0, self.hog_threshold), self.hog_threshold)
            else:
                primary = (_hog_detector(0, self.hog_threshold), self.hog_threshold)
                secondary = (_hog_detector(1, self.hog_threshold), self.hog_threshold)

            shape_predictor = dlib.shape_predictor(str(bundle.path(LANDMARKS_ASSET)))
            face_rec_model = dlib.face_recognition_model_v1(str(bundle.path(RECOGNITION_ASSET)))
        except Exception as e:
            raise RuntimeError(f"Could not load dlib models: {e}") from e

        self._primary = primary
        self._secondary = secondary
        self._shape_predictor = shape_predictor
        self._face_rec_model = face_rec_model
        self.backend = "cuda" if accelerated else "cpu"

        logger.info(f"dlib recognizer ready on {self.backend}")
        return self.backend

    def _ensure_loaded(self) -> None:
        if self._primary is None:
            raise RuntimeError("dlib recognizer not loaded. Call load() first.")

    def detect(self, frame_bgr: np.ndarray) -> Optional[DetectionBox]:
        """Detect the most confident face, trying the secondary detector on a miss.

        Args:
            frame_bgr: Input image in BGR format, shape [H, W, 3]

        Returns:
            DetectionBox of the best face, or None.
        """
        self._ensure_loaded()

        if frame_bgr is None or frame_bgr.size == 0:
            logger.warning("Empty frame provided to recognizer")
            return None

        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

        candidates = self._run(self._primary, rgb)
        if not candidates:
            candidates = self._run(self._secondary, rgb)
            if candidates:
                logger.debug("Primary detector missed; secondary detector found a face")

        if not candidates:
            return None

        left, top, right, bottom, score = max(candidates, key=lambda c: c[4])
        return DetectionBox.from_corners(left, top, right, bottom, score, frame_bgr.shape)

    @staticmethod
    def _run(detector: _Detector, rgb: np.ndarray) -> List[Tuple[int, int, int, int, float]]:
        detect, threshold = detector
        return [d for d in detect(rgb) if d[4] >= threshold]

    def describe(self, frame_bgr: np.ndarray, box: DetectionBox) -> np.ndarray:
        """Compute the 128-D descriptor of the face inside ``box``.

        Args:
            frame_bgr: Input image in BGR format, shape [H, W, 3]
            box: Face box in the same frame

        Returns:
            Descriptor vector, shape [128], dtype float32 (not normalized;
            the matcher works on raw dlib Euclidean distances).
        """
        self._ensure_loaded()

        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        left, top, right, bottom = box.as_ltrb()
        rect = dlib.rectangle(left, top, right, bottom)

        shape = self._shape_predictor(rgb, rect)
        descriptor = self._face_rec_model.compute_face_descriptor(rgb, shape, self.num_jitters)

        vector = np.asarray(descriptor, dtype=np.float32)
        if vector.shape != (self.descriptor_dim,):
            raise RuntimeError(
                f"Expected descriptor of shape ({self.descriptor_dim},), got {vector.shape}"
            )
        return vector
