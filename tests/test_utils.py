"""Unit tests for descriptor records, frame encoding and the identities file."""

from __future__ import annotations

import json

import numpy as np
import pytest

from rostercheck.core.interfaces import DetectionBox
from rostercheck.core.utils import (
    decode_data_uri,
    descriptor_from_record,
    descriptor_to_record,
    encode_frame_data_uri,
    load_identities_json,
    save_identity_json,
)


def test_record_read_in_index_order():
    """Values come out in index order regardless of key insertion order."""
    record = {"2": 3.0, "0": 1.0, "1": 2.0}

    vector = descriptor_from_record(record, dimension=3)

    np.testing.assert_array_equal(vector, np.array([1.0, 2.0, 3.0], dtype=np.float32))
    assert vector.dtype == np.float32


def test_record_not_sorted_lexicographically():
    """Index "10" follows "9", not "1"."""
    record = {str(i): float(i) for i in range(12)}

    vector = descriptor_from_record(record, dimension=12)

    np.testing.assert_array_equal(vector, np.arange(12, dtype=np.float32))


def test_record_missing_index():
    record = {str(i): 0.0 for i in range(128) if i != 5}

    with pytest.raises(ValueError, match="missing index 5"):
        descriptor_from_record(record)


def test_record_extra_index():
    record = {str(i): 0.0 for i in range(129)}

    with pytest.raises(ValueError, match="unexpected keys"):
        descriptor_from_record(record)


def test_record_non_numeric():
    record = {str(i): 0.0 for i in range(128)}
    record["3"] = "abc"

    with pytest.raises(ValueError):
        descriptor_from_record(record)


def test_sequence_record():
    """Plain lists are accepted when the length is right."""
    vector = descriptor_from_record([0.5] * 128)

    assert vector.shape == (128,)


def test_sequence_wrong_length():
    with pytest.raises(ValueError, match="length 128"):
        descriptor_from_record([0.5] * 127)


def test_to_record_shape():
    record = descriptor_to_record(np.arange(128, dtype=np.float32))

    assert list(record)[:3] == ["0", "1", "2"]
    assert record["127"] == 127.0
    np.testing.assert_array_equal(descriptor_from_record(record), np.arange(128, dtype=np.float32))


def test_encode_frame_data_uri():
    """Frames are stretched onto a square canvas and sent as JPEG."""
    frame = np.full((480, 640, 3), 128, dtype=np.uint8)

    uri = encode_frame_data_uri(frame, size=320, quality=0.7)

    assert uri.startswith("data:image/jpeg;base64,")
    decoded = decode_data_uri(uri)
    assert decoded.shape == (320, 320, 3)


def test_encode_empty_frame():
    with pytest.raises(ValueError):
        encode_frame_data_uri(np.zeros((0, 0, 3), dtype=np.uint8))


def test_decode_rejects_garbage():
    with pytest.raises(ValueError):
        decode_data_uri("data:image/png;base64,not-base64!!")


def test_decode_rejects_non_image_bytes():
    with pytest.raises(ValueError, match="decode"):
        decode_data_uri("data:image/jpeg;base64,aGVsbG8=")


def test_decode_rejects_non_string():
    with pytest.raises(ValueError):
        decode_data_uri(12345)


def test_identities_file_roundtrip(tmp_path):
    path = tmp_path / "identities.json"
    record = descriptor_to_record(np.zeros(128, dtype=np.float32))

    save_identity_json(path, "P-1", record)
    save_identity_json(path, "P-2", record)
    identities = load_identities_json(path)

    assert [i.id for i in identities] == ["P-1", "P-2"]
    assert json.loads(path.read_text())["P-1"]["0"] == 0.0


def test_identities_file_missing(tmp_path):
    assert load_identities_json(tmp_path / "nope.json") == []


def test_box_from_corners_clamps_and_clips():
    box = DetectionBox.from_corners(-10, 20, 700, 200, 1.7, frame_shape=(480, 640, 3))

    assert box.x == 0.0
    assert box.right == 639.0
    assert box.score == 1.0


def test_box_validation():
    with pytest.raises(ValueError):
        DetectionBox(x=0, y=0, width=-1, height=10, score=0.5)
    with pytest.raises(ValueError):
        DetectionBox(x=0, y=0, width=10, height=10, score=1.5)
