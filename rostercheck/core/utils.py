"""Utility functions for the recognition engine.

This module provides helpers for descriptor (de)serialization, distance
computation, the frame encoding shared by the cloud client and server, and
the JSON identities file used by the scripts.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

import cv2
import numpy as np

from rostercheck.core.interfaces import DEEP_DESCRIPTOR_DIM, DescriptorRecord, EnrolledIdentity

_DATA_URI_PREFIX = re.compile(r"^data:image/\w+;base64,")


def descriptor_from_record(
    record: DescriptorRecord,
    dimension: int = DEEP_DESCRIPTOR_DIM,
) -> np.ndarray:
    """Reconstruct an ordered descriptor vector from its storage shape.

    Mappings are read strictly: keys must be exactly the zero-based numeric
    strings "0".."dimension-1"; values are taken in index order, never in
    mapping order. Sequences and arrays must have exactly ``dimension``
    elements.

    Args:
        record: Mapping from numeric-string index to value, or a sequence
        dimension: Expected descriptor length

    Returns:
        Descriptor vector, shape [dimension], dtype float32.

    Raises:
        ValueError: If an index is missing, an extra key is present, the
            length is wrong or a value is not numeric.

    Example:
        >>> descriptor_from_record({"1": 0.5, "0": 0.25}, dimension=2)
        array([0.25, 0.5 ], dtype=float32)
    """
    if isinstance(record, Mapping):
        values = []
        for index in range(dimension):
            key = str(index)
            if key not in record:
                raise ValueError(f"Descriptor record is missing index {index}")
            values.append(record[key])
        if len(record) != dimension:
            extra = sorted(set(record) - {str(i) for i in range(dimension)})
            raise ValueError(f"Descriptor record has unexpected keys: {extra[:5]}")
    else:
        values = list(record)
        if len(values) != dimension:
            raise ValueError(
                f"Expected descriptor of length {dimension}, got {len(values)}"
            )

    try:
        vector = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Descriptor record holds non-numeric values: {e}") from e

    if not np.all(np.isfinite(vector)):
        raise ValueError("Descriptor record holds non-finite values")

    return vector


def descriptor_to_record(descriptor: np.ndarray) -> Dict[str, float]:
    """Convert a descriptor into the storage mapping {"0": v0, "1": v1, ...}."""
    flat = np.asarray(descriptor, dtype=np.float32).ravel()
    return {str(i): float(v) for i, v in enumerate(flat)}


def euclidean_distances(references: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Euclidean distance from ``query`` [D] to each row of ``references`` [N, D]."""
    if references.size == 0:
        return np.empty((0,), dtype=np.float32)
    return np.linalg.norm(references - query, axis=1)


def encode_frame_data_uri(frame_bgr: np.ndarray, size: int = 320, quality: float = 0.7) -> str:
    """Render a frame onto a square canvas and encode it as a JPEG data URI.

    The frame is stretched to ``size`` x ``size`` (no letterboxing), then
    encoded at the given lossy quality.

    Args:
        frame_bgr: Input image in BGR format, shape [H, W, 3]
        size: Side of the square canvas in pixels
        quality: JPEG quality in (0.0, 1.0]

    Returns:
        String of the form "data:image/jpeg;base64,...".

    Raises:
        ValueError: If the frame is empty or cannot be encoded.
    """
    if frame_bgr is None or frame_bgr.size == 0:
        raise ValueError("Empty frame provided")

    canvas = cv2.resize(frame_bgr, (size, size), interpolation=cv2.INTER_AREA)
    ok, buffer = cv2.imencode(
        ".jpg", canvas, [cv2.IMWRITE_JPEG_QUALITY, int(round(quality * 100))]
    )
    if not ok:
        raise ValueError("JPEG encoding failed")

    encoded = base64.b64encode(buffer.tobytes()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


def decode_data_uri(image: Any) -> np.ndarray:
    """Decode a (data URI or bare) base64 image into a BGR frame.

    Raises:
        ValueError: If the payload is not a string or not a decodable image.
    """
    if not isinstance(image, str):
        raise ValueError("Image must be a base64 string")

    payload = _DATA_URI_PREFIX.sub("", image, count=1)
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image: {e}") from e

    frame = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise ValueError("Could not decode image")
    return frame


def load_identities_json(path: Union[str, Path]) -> List[EnrolledIdentity]:
    """Load enrolled identities from a JSON file {id: descriptor_record | null}.

    A missing file yields an empty list.
    """
    path = Path(path)
    if not path.exists():
        return []

    with open(path) as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Identities file must hold a JSON object: {path}")

    return [EnrolledIdentity(id=str(k), descriptor=v) for k, v in data.items()]


def save_identity_json(path: Union[str, Path], identity_id: str, record: Dict[str, float]) -> None:
    """Insert or replace one identity's descriptor record in a JSON identities file."""
    path = Path(path)
    data: Dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            data = json.load(f)

    data[identity_id] = record
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
