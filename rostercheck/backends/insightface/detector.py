"""SCRFD fast face detector using InsightFace.

This module provides the lightweight detector used for continuous tracking.
The SCRFD ONNX model is loaded straight from the resolved asset bundle via
InsightFace's model zoo and runs on onnxruntime.
"""

from __future__ import annotations

from typing import ClassVar, Optional, Tuple

import numpy as np
from insightface.model_zoo import get_model

from rostercheck.assets.manifest import FAST_DETECTOR_ASSET, AssetBundle
from rostercheck.core.interfaces import DetectionBox
from rostercheck.core.logging_config import get_logger

logger = get_logger(__name__)

CUDA_PROVIDER = "CUDAExecutionProvider"
CPU_PROVIDER = "CPUExecutionProvider"


class SCRFDDetector:
    """Fast face detector using the SCRFD model.

    Only the most confident face is reported. Its box feeds the tracking UI
    and the quality gate; it is never used for identification.

    Attributes:
        input_size: Network input size as (width, height)
        score_threshold: Minimum detection confidence
        backend: Name of the execution backend after load()

    Example:
        >>> detector = SCRFDDetector(score_threshold=0.5)
        >>> detector.load(bundle, accelerated=False)
        'cpu'
        >>> box = detector.detect(frame)
    """

    name: ClassVar[str] = "scrfd"
    required_assets: ClassVar[Tuple[str, ...]] = (FAST_DETECTOR_ASSET,)

    def __init__(
        self,
        score_threshold: float = 0.5,
        input_size: Tuple[int, int] = (320, 320),
        nms_threshold: float = 0.4,
    ):
        """Initialize SCRFD detector (weights are loaded by load()).

        Args:
            score_threshold: Minimum confidence for a detection
            input_size: Detection input size as (width, height).
                       Smaller sizes are faster; (320, 320) suits tracking.
            nms_threshold: IoU threshold for non-maximum suppression
        """
        self.score_threshold = score_threshold
        self.input_size = input_size
        self.nms_threshold = nms_threshold
        self.backend: Optional[str] = None
        self._model = None

    def load(self, bundle: AssetBundle, accelerated: bool) -> str:
        """Load the SCRFD model from the bundle.

        Args:
            bundle: Resolved asset bundle
            accelerated: Run on the CUDA execution provider; raise if it is
                not available

        Returns:
            "cuda" or "cpu".

        Raises:
            RuntimeError: If the model cannot be loaded on the requested backend.
        """
        model_path = bundle.path(FAST_DETECTOR_ASSET)
        providers = [CUDA_PROVIDER] if accelerated else [CPU_PROVIDER]
        ctx_id = 0 if accelerated else -1

        logger.info(
            f"Loading SCRFD detector from {model_path.name} "
            f"(providers={providers}, input_size={self.input_size})"
        )

        try:
            model = get_model(str(model_path), providers=providers)
        except Exception as e:
            raise RuntimeError(f"Could not load SCRFD detector: {e}") from e

        if model is None:
            raise RuntimeError(f"{model_path.name} is not a model InsightFace recognizes")

        # onnxruntime silently drops providers it cannot initialize
        active = model.session.get_providers()
        if accelerated and CUDA_PROVIDER not in active:
            raise RuntimeError(f"CUDA execution provider unavailable (active: {active})")

        model.prepare(
            ctx_id,
            input_size=self.input_size,
            det_thresh=self.score_threshold,
            nms_thresh=self.nms_threshold,
        )

        self._model = model
        self.backend = "cuda" if accelerated else "cpu"
        logger.info(f"SCRFD detector ready on {self.backend}")
        return self.backend

    def detect(self, frame_bgr: np.ndarray) -> Optional[DetectionBox]:
        """Detect the most confident face in a frame.

        Args:
            frame_bgr: Input image in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            DetectionBox of the top-scoring face, or None if no face passes
            the score threshold.

        Raises:
            RuntimeError: If load() has not been called.
        """
        if self._model is None:
            raise RuntimeError("SCRFD detector not loaded. Call load() first.")

        if frame_bgr is None or frame_bgr.size == 0:
            logger.warning("Empty frame provided to detector")
            return None

        # det: [N, 5] rows of (x1, y1, x2, y2, score)
        det, _kpss = self._model.detect(frame_bgr, input_size=self.input_size)
        if det is None or len(det) == 0:
            return None

        best = det[int(np.argmax(det[:, 4]))]
        if float(best[4]) < self.score_threshold:
            return None

        return DetectionBox.from_corners(
            best[0], best[1], best[2], best[3], float(best[4]), frame_bgr.shape
        )
