"""Tests for the check-in service (local and cloud descriptor paths)."""

from __future__ import annotations

from unittest.mock import AsyncMock

import numpy as np
import pytest
import pytest_asyncio

from rostercheck.core.errors import (
    EngineNotReady,
    RateLimitExceeded,
    TransportFailure,
)
from rostercheck.core.interfaces import EnrolledIdentity, NoFaceResult, QualityReason
from rostercheck.core.utils import descriptor_to_record
from rostercheck.services.checkin import (
    MSG_BUSY,
    MSG_NO_FACE,
    MSG_RETRY,
    CheckInService,
    CheckInStatus,
)
from rostercheck.services.orchestrator import DetectionOrchestrator
from rostercheck.services.quality import PROMPT_TOO_CLOSE, PROMPT_TOO_FAR

from conftest import FakeDeepRecognizer, box_with_ratio


def one_hot(index: int, value: float = 1.0) -> np.ndarray:
    vec = np.zeros(128, dtype=np.float32)
    vec[index] = value
    return vec


@pytest.fixture
def identities():
    return [
        EnrolledIdentity(id="P-001", descriptor=descriptor_to_record(np.zeros(128, dtype=np.float32))),
        EnrolledIdentity(id="P-002", descriptor=descriptor_to_record(one_hot(0))),
        EnrolledIdentity(id="P-003"),
    ]


@pytest_asyncio.fixture
async def service(orchestrator, gate, identities):
    await orchestrator.initialize()
    service = CheckInService(orchestrator, gate)
    service.replace_identities(identities)
    return service


@pytest.fixture
def cloud():
    client = AsyncMock()
    client.infer.return_value = np.zeros(128, dtype=np.float32)
    return client


@pytest_asyncio.fixture
async def cloud_service(orchestrator, gate, identities, cloud):
    await orchestrator.initialize()
    service = CheckInService(orchestrator, gate, cloud=cloud, use_cloud=True)
    service.replace_identities(identities)
    return service


def test_replace_identities_counts_usable(orchestrator, gate, identities):
    service = CheckInService(orchestrator, gate)

    assert service.replace_identities(identities) == 2
    assert service.matcher.labels == ["P-001", "P-002"]


def test_replace_identities_keeps_old_handle_on_error(orchestrator, gate, identities):
    service = CheckInService(orchestrator, gate)
    service.replace_identities(identities)
    previous = service.matcher

    with pytest.raises(ValueError):
        service.replace_identities([EnrolledIdentity(id="bad", descriptor={"0": 1.0})])

    assert service.matcher is previous


def test_use_cloud_requires_client(orchestrator, gate):
    with pytest.raises(ValueError):
        CheckInService(orchestrator, gate, use_cloud=True)


@pytest.mark.asyncio
async def test_no_identities(orchestrator, gate, frame, deep_engine):
    await orchestrator.initialize()
    service = CheckInService(orchestrator, gate)

    result = await service.identify(frame)

    assert result.status is CheckInStatus.NO_IDENTITIES
    assert deep_engine.detect_calls == 0


@pytest.mark.asyncio
async def test_identify_matches(service, frame):
    result = await service.identify(frame)

    assert result.status is CheckInStatus.MATCHED
    assert result.match.label == "P-001"
    assert result.match.distance == 0.0
    assert result.source == "local"
    assert result.verdict.accepted


@pytest.mark.asyncio
async def test_identify_unknown(service, frame, deep_engine):
    deep_engine.descriptor = one_hot(5, 3.0)

    result = await service.identify(frame)

    assert result.status is CheckInStatus.UNKNOWN
    assert not result.match.is_known
    assert result.match.distance == pytest.approx(3.0)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "ratio, reason, prompt",
    [(0.1, QualityReason.TOO_FAR, PROMPT_TOO_FAR), (0.8, QualityReason.TOO_CLOSE, PROMPT_TOO_CLOSE)],
)
async def test_identify_rejected_by_gate(service, frame, deep_engine, ratio, reason, prompt):
    deep_engine.box = box_with_ratio(ratio)

    result = await service.identify(frame)

    assert result.status is CheckInStatus.REJECTED
    assert result.verdict.reason_code is reason
    assert result.message == prompt
    assert result.match is None
    assert deep_engine.describe_calls == 0


@pytest.mark.asyncio
async def test_identify_no_face(service, frame, deep_engine):
    deep_engine.box = None

    result = await service.identify(frame)

    assert result.status is CheckInStatus.NO_FACE
    assert result.message == MSG_NO_FACE


@pytest.mark.asyncio
async def test_identify_inference_failure_is_recoverable(service, frame, deep_engine):
    deep_engine.error = RuntimeError("dlib error")

    failed = await service.identify(frame)
    deep_engine.error = None
    recovered = await service.identify(frame)

    assert failed.status is CheckInStatus.FAILED
    assert failed.message == MSG_RETRY
    assert recovered.status is CheckInStatus.MATCHED


@pytest.mark.asyncio
async def test_identify_before_initialize(resolver, fast_engine, gate, identities, frame):
    orchestrator = DetectionOrchestrator(resolver, fast_engine, FakeDeepRecognizer())
    service = CheckInService(orchestrator, gate)
    service.replace_identities(identities)

    with pytest.raises(EngineNotReady):
        await service.identify(frame)


@pytest.mark.asyncio
async def test_track_reports_box_and_verdict(service, frame, fast_engine):
    fast_engine.box = box_with_ratio(0.1)

    feedback = await service.track(frame)

    assert feedback.box == fast_engine.box
    assert feedback.verdict.reason_code is QualityReason.TOO_FAR
    assert feedback.prompt == PROMPT_TOO_FAR


@pytest.mark.asyncio
async def test_track_no_face(service, frame, fast_engine):
    fast_engine.box = None

    feedback = await service.track(frame)

    assert feedback.box is None
    assert feedback.prompt == MSG_NO_FACE


@pytest.mark.asyncio
async def test_cloud_match(cloud_service, cloud, frame, deep_engine):
    result = await cloud_service.identify(frame)

    assert result.status is CheckInStatus.MATCHED
    assert result.source == "cloud"
    assert result.match.label == "P-001"
    cloud.infer.assert_awaited_once()
    assert deep_engine.detect_calls == 0


@pytest.mark.asyncio
async def test_cloud_uses_same_threshold(cloud_service, cloud, frame):
    cloud.infer.return_value = one_hot(3, 0.46)

    result = await cloud_service.identify(frame)

    assert result.status is CheckInStatus.UNKNOWN


@pytest.mark.asyncio
async def test_cloud_gate_rejects_before_offload(cloud_service, cloud, frame, fast_engine):
    fast_engine.box = box_with_ratio(0.8)

    result = await cloud_service.identify(frame)

    assert result.status is CheckInStatus.REJECTED
    assert result.message == PROMPT_TOO_CLOSE
    cloud.infer.assert_not_awaited()


@pytest.mark.asyncio
async def test_cloud_gate_disabled(orchestrator, gate, identities, cloud, frame, fast_engine):
    await orchestrator.initialize()
    service = CheckInService(orchestrator, gate, cloud=cloud, use_cloud=True, cloud_quality_gate=False)
    service.replace_identities(identities)
    fast_engine.box = box_with_ratio(0.8)

    result = await service.identify(frame)

    assert result.status is CheckInStatus.MATCHED
    assert fast_engine.detect_calls == 0


@pytest.mark.asyncio
async def test_cloud_no_face(cloud_service, cloud, frame):
    cloud.infer.return_value = NoFaceResult(message="No face detected on the server")

    result = await cloud_service.identify(frame)

    assert result.status is CheckInStatus.NO_FACE
    assert result.message == "No face detected on the server"


@pytest.mark.asyncio
async def test_cloud_rate_limited(cloud_service, cloud, frame):
    cloud.infer.side_effect = RateLimitExceeded("quota spent", status_code=429)

    result = await cloud_service.identify(frame)

    assert result.status is CheckInStatus.FAILED
    assert result.message == MSG_BUSY


@pytest.mark.asyncio
async def test_cloud_transport_failure(cloud_service, cloud, frame):
    cloud.infer.side_effect = TransportFailure("Cloud endpoint returned 500", status_code=500)

    result = await cloud_service.identify(frame)

    assert result.status is CheckInStatus.FAILED
    assert result.message == MSG_RETRY
