"""Camera input for the check-in kiosk scripts."""

from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from rostercheck.core.logging_config import get_logger

logger = get_logger(__name__)


class WebcamSource:
    """Frame source wrapping OpenCV's VideoCapture.

    Example:
        >>> with WebcamSource(camera_id=0) as source:
        ...     ok, frame = source.read()
    """

    def __init__(self, camera_id: int = 0, width: int = 1280, height: int = 720):
        """Open the camera.

        Raises:
            RuntimeError: If the camera cannot be opened.
        """
        self.camera_id = camera_id
        self.cap = cv2.VideoCapture(camera_id)

        if not self.cap.isOpened():
            raise RuntimeError(
                f"Failed to open webcam with camera_id={camera_id}. "
                f"Check if camera is connected and not in use by another application."
            )

        # Best effort; some cameras ignore the requested resolution
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        actual_w = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Opened webcam {camera_id}: {actual_w}x{actual_h}")

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """Read the next frame; (False, None) on failure."""
        if not self.cap.isOpened():
            logger.error("Webcam is not opened")
            return False, None

        success, frame = self.cap.read()
        if not success:
            logger.warning("Failed to read frame from webcam")
            return False, None
        return True, frame

    def release(self) -> None:
        if self.cap.isOpened():
            self.cap.release()
            logger.info(f"Released webcam {self.camera_id}")

    def __enter__(self) -> WebcamSource:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
