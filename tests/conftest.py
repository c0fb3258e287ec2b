"""Shared fixtures: in-memory engines so tests need no model files, dlib or insightface."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest

from rostercheck.assets.manifest import (
    FAST_DETECTOR_ASSET,
    LANDMARKS_ASSET,
    RECOGNITION_ASSET,
    AssetBundle,
)
from rostercheck.core.errors import AcquisitionFailure
from rostercheck.core.interfaces import DetectionBox
from rostercheck.services.orchestrator import DetectionOrchestrator
from rostercheck.services.quality import QualityGate

FRAME_WIDTH = 640
FRAME_HEIGHT = 480


def box_with_ratio(ratio: float, frame_width: int = FRAME_WIDTH, score: float = 0.9) -> DetectionBox:
    """Face box whose width is ``ratio`` of the frame width."""
    width = ratio * frame_width
    return DetectionBox(x=100.0, y=80.0, width=width, height=width, score=score)


class FakeEngine:
    """Engine double with scripted load/detect behavior.

    ``gate`` (a pair of threading.Events) makes detect() signal that it started
    and then block until released, to hold the engine busy.
    """

    name = "fake"
    required_assets = ()

    def __init__(
        self,
        box: Optional[DetectionBox] = None,
        fail_accelerated: bool = False,
        fail_default: bool = False,
    ):
        self.box = box
        self.fail_accelerated = fail_accelerated
        self.fail_default = fail_default
        self.error: Optional[Exception] = None
        self.gate: Optional[tuple] = None
        self.load_delay = 0.0
        self.loads: List[bool] = []
        self.detect_calls = 0
        self.active = 0
        self.max_active = 0
        self._active_lock = threading.Lock()

    def load(self, bundle: AssetBundle, accelerated: bool) -> str:
        self.loads.append(accelerated)
        if self.load_delay:
            time.sleep(self.load_delay)
        if accelerated and self.fail_accelerated:
            raise RuntimeError("CUDA execution provider unavailable")
        if not accelerated and self.fail_default:
            raise RuntimeError("model file is corrupt")
        return "cuda" if accelerated else "cpu"

    def detect(self, frame_bgr: np.ndarray) -> Optional[DetectionBox]:
        self.detect_calls += 1
        with self._active_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            return self._detect()
        finally:
            with self._active_lock:
                self.active -= 1

    def _detect(self) -> Optional[DetectionBox]:
        if self.gate is not None:
            started, release = self.gate
            started.set()
            release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.box


class FakeFastDetector(FakeEngine):
    name = "fake-scrfd"
    required_assets = (FAST_DETECTOR_ASSET,)


class FakeDeepRecognizer(FakeEngine):
    name = "fake-dlib"
    required_assets = (LANDMARKS_ASSET, RECOGNITION_ASSET)

    def __init__(self, box: Optional[DetectionBox] = None, descriptor=None, **kwargs):
        super().__init__(box=box, **kwargs)
        self.descriptor_dim = 128
        self.descriptor = (
            np.zeros(128, dtype=np.float32) if descriptor is None else np.asarray(descriptor, dtype=np.float32)
        )
        self.describe_calls = 0

    def describe(self, frame_bgr: np.ndarray, box: DetectionBox) -> np.ndarray:
        self.describe_calls += 1
        return self.descriptor


class FakeResolver:
    """Resolver double returning a fixed bundle, or raising a fixed error."""

    def __init__(self, bundle: AssetBundle, error: Optional[AcquisitionFailure] = None):
        self.bundle = bundle
        self.error = error
        self.calls: List[bool] = []

    async def resolve(self, fresh: bool = False) -> AssetBundle:
        self.calls.append(fresh)
        if self.error is not None:
            raise self.error
        return self.bundle


@pytest.fixture
def bundle() -> AssetBundle:
    """Bundle declaring every asset the fake engines require."""
    return AssetBundle(
        source="https://models.example.com/ai_models",
        version="test",
        files={
            FAST_DETECTOR_ASSET: Path("scrfd_500m_bnkps.onnx"),
            LANDMARKS_ASSET: Path("shape_predictor_68_face_landmarks.dat"),
            RECOGNITION_ASSET: Path("dlib_face_recognition_resnet_model_v1.dat"),
        },
    )


@pytest.fixture
def frame() -> np.ndarray:
    """Blank 640x480 BGR frame."""
    return np.zeros((FRAME_HEIGHT, FRAME_WIDTH, 3), dtype=np.uint8)


@pytest.fixture
def gate() -> QualityGate:
    return QualityGate()


@pytest.fixture
def fast_engine() -> FakeFastDetector:
    return FakeFastDetector(box=box_with_ratio(0.35))


@pytest.fixture
def deep_engine() -> FakeDeepRecognizer:
    return FakeDeepRecognizer(box=box_with_ratio(0.35))


@pytest.fixture
def resolver(bundle) -> FakeResolver:
    return FakeResolver(bundle)


@pytest.fixture
def orchestrator(resolver, fast_engine, deep_engine) -> DetectionOrchestrator:
    return DetectionOrchestrator(resolver, fast_engine, deep_engine, prefer_accelerated=True)


@pytest.fixture
def blocking_gate():
    """(started, release) events; released automatically at teardown."""
    started, release = threading.Event(), threading.Event()
    yield started, release
    release.set()
