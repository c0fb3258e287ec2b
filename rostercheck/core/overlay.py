"""Drawing helpers for the check-in preview window."""

from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from rostercheck.core.interfaces import DetectionBox, QualityVerdict

# Color palette (BGR format for OpenCV)
COLOR_GREEN = (0, 255, 0)
COLOR_RED = (0, 0, 255)
COLOR_YELLOW = (0, 255, 255)
COLOR_WHITE = (255, 255, 255)
COLOR_BLACK = (0, 0, 0)


def draw_text(
    frame: np.ndarray,
    text: str,
    position: Tuple[int, int],
    color: Tuple[int, int, int] = COLOR_WHITE,
    font_scale: float = 0.6,
    thickness: int = 2,
    bg_color: Optional[Tuple[int, int, int]] = COLOR_BLACK,
) -> None:
    """Draw text with an optional filled background (in-place)."""
    font = cv2.FONT_HERSHEY_SIMPLEX
    x, y = position

    if bg_color is not None:
        (text_w, text_h), baseline = cv2.getTextSize(text, font, font_scale, thickness)
        cv2.rectangle(frame, (x, y - text_h - baseline), (x + text_w, y + baseline), bg_color, -1)

    cv2.putText(frame, text, (x, y), font, font_scale, color, thickness, cv2.LINE_AA)


def draw_box(
    frame: np.ndarray,
    box: DetectionBox,
    label: Optional[str] = None,
    color: Tuple[int, int, int] = COLOR_GREEN,
    thickness: int = 2,
) -> None:
    """Draw a face box and an optional label above it (in-place)."""
    left, top, right, bottom = box.as_ltrb()
    cv2.rectangle(frame, (left, top), (right, bottom), color, thickness)

    if label:
        # Below the box when there is no room above it
        y = top - 10 if top >= 30 else bottom + 20
        draw_text(frame, label, (left, y), color=color)


def draw_feedback(
    frame: np.ndarray,
    box: Optional[DetectionBox],
    verdict: Optional[QualityVerdict],
    status: str = "",
) -> None:
    """Draw tracking feedback: box colored by the quality verdict plus a status line."""
    if box is not None:
        color = COLOR_GREEN if verdict is None or verdict.accepted else COLOR_YELLOW
        draw_box(frame, box, verdict.prompt if verdict else None, color=color)

    if status:
        draw_text(frame, status, (10, frame.shape[0] - 15), color=COLOR_WHITE)
