"""Tests for pipeline wiring."""

from __future__ import annotations

import pytest

from rostercheck.assets.manifest import FAST_DETECTOR_ASSET, LANDMARKS_ASSET, RECOGNITION_ASSET
from rostercheck.backends.factory import create_pipeline
from rostercheck.cloud.client import CloudOffloadClient
from rostercheck.core.config import Config


@pytest.fixture
def config(monkeypatch, tmp_path):
    monkeypatch.setenv("MODELS_DIR", str(tmp_path))
    monkeypatch.setenv("MODEL_SOURCES", "https://cdn.example.com/ai_models,/ai_models")
    monkeypatch.setenv("MATCH_THRESHOLD", "0.5")
    monkeypatch.delenv("USE_CLOUD", raising=False)
    return Config.from_env()


@pytest.mark.asyncio
async def test_local_pipeline(config, fast_engine, deep_engine, tmp_path):
    components = create_pipeline(config, fast_engine=fast_engine, deep_engine=deep_engine)

    assert components.cloud is None
    assert components.resolver.candidates == ("https://cdn.example.com/ai_models", "/ai_models")
    assert set(components.resolver.required_assets) == {
        FAST_DETECTOR_ASSET, LANDMARKS_ASSET, RECOGNITION_ASSET,
    }
    assert components.resolver.cache_dir == tmp_path / "cache"
    assert components.checkin.threshold == 0.5
    assert components.enrollment.checkin is components.checkin
    assert components.orchestrator.fast.engine is fast_engine

    await components.close()


@pytest.mark.asyncio
async def test_cloud_pipeline(config, fast_engine, deep_engine):
    config.use_cloud = True

    components = create_pipeline(config, fast_engine=fast_engine, deep_engine=deep_engine)

    assert isinstance(components.cloud, CloudOffloadClient)
    assert components.cloud.endpoint == config.cloud_endpoint
    assert components.checkin.use_cloud

    await components.close()
