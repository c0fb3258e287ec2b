"""Unit tests for enrollment service."""

from __future__ import annotations

import numpy as np
import pytest
import pytest_asyncio

from rostercheck.core.errors import EngineNotReady
from rostercheck.core.interfaces import EnrolledIdentity
from rostercheck.core.utils import descriptor_from_record, descriptor_to_record
from rostercheck.services.checkin import CheckInService
from rostercheck.services.enrollment import EnrollmentService
from rostercheck.services.quality import PROMPT_TOO_FAR

from conftest import box_with_ratio


@pytest.fixture
def checkin(orchestrator, gate):
    return CheckInService(orchestrator, gate)


@pytest_asyncio.fixture
async def enrollment_service(orchestrator, checkin):
    """Enrollment service over an initialized orchestrator."""
    await orchestrator.initialize()
    return EnrollmentService(checkin)


@pytest.fixture
def new_face() -> np.ndarray:
    vec = np.zeros(128, dtype=np.float32)
    vec[10] = 0.8
    return vec


@pytest.mark.asyncio
async def test_capture_success(enrollment_service, deep_engine, frame, new_face):
    """A well-framed new face yields its descriptor and storage record."""
    deep_engine.descriptor = new_face

    capture = await enrollment_service.capture(frame)

    assert capture.success
    assert capture.message == "Face captured"
    assert capture.verdict.accepted
    assert set(capture.record) == {str(i) for i in range(128)}
    np.testing.assert_array_equal(descriptor_from_record(capture.record), new_face)


@pytest.mark.asyncio
async def test_capture_blocks_duplicate(enrollment_service, checkin, deep_engine, frame, new_face):
    """A face already enrolled under another id is refused."""
    checkin.replace_identities([EnrolledIdentity(id="P-042", descriptor=descriptor_to_record(new_face))])
    deep_engine.descriptor = new_face + 0.01

    capture = await enrollment_service.capture(frame)

    assert not capture.success
    assert capture.duplicate_of.label == "P-042"
    assert capture.record is None
    assert "P-042" in capture.message


@pytest.mark.asyncio
async def test_capture_allows_distinct_face(enrollment_service, checkin, deep_engine, frame, new_face):
    checkin.replace_identities([EnrolledIdentity(id="P-042", descriptor=[0.0] * 128)])
    deep_engine.descriptor = new_face

    capture = await enrollment_service.capture(frame)

    assert capture.success
    assert capture.duplicate_of is None


@pytest.mark.asyncio
async def test_capture_rejected_face(enrollment_service, deep_engine, frame):
    """A rejected face reports the gate's prompt and no descriptor."""
    deep_engine.box = box_with_ratio(0.1)

    capture = await enrollment_service.capture(frame)

    assert not capture.success
    assert capture.descriptor is None
    assert capture.message == PROMPT_TOO_FAR
    assert deep_engine.describe_calls == 0


@pytest.mark.asyncio
async def test_capture_no_face(enrollment_service, deep_engine, frame):
    deep_engine.box = None

    capture = await enrollment_service.capture(frame)

    assert not capture.success
    assert capture.message == "No face detected"


@pytest.mark.asyncio
async def test_capture_engine_error(enrollment_service, deep_engine, frame):
    deep_engine.error = RuntimeError("dlib error")

    capture = await enrollment_service.capture(frame)

    assert not capture.success
    assert "try again" in capture.message


@pytest.mark.asyncio
async def test_capture_requires_initialized_engine(checkin, frame):
    service = EnrollmentService(checkin)

    with pytest.raises(EngineNotReady):
        await service.capture(frame)
