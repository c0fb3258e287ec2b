"""Tests for the model manifest and the source resolver (HTTP via httpx.MockTransport)."""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from collections import Counter

import httpx
import pytest

from rostercheck.assets.manifest import AssetBundle, parse_manifest
from rostercheck.assets.resolver import ModelSourceResolver
from rostercheck.core.errors import AcquisitionFailure
from rostercheck.core.interfaces import EngineState

GOOD = "https://good.example.com/ai_models"
HTML = "https://html.example.com/ai_models"
MISSING = "https://missing.example.com/ai_models"
BROKEN = "https://broken.example.com/ai_models"

SHARDS = {
    "landmarks_68-shard1": b"landmarks-part-one|",
    "landmarks_68-shard2": b"landmarks-part-two",
    "face_recognition-shard1": b"resnet-weights",
}
LANDMARKS = SHARDS["landmarks_68-shard1"] + SHARDS["landmarks_68-shard2"]


def manifest_body(**overrides) -> bytes:
    assets = {
        "landmarks_68": {
            "file": "shape_predictor_68_face_landmarks.dat",
            "paths": ["landmarks_68-shard1", "landmarks_68-shard2"],
            "sha256": hashlib.sha256(LANDMARKS).hexdigest(),
            "size": len(LANDMARKS),
        },
        "face_recognition": {
            "file": "dlib_face_recognition_resnet_model_v1.dat",
            "paths": ["face_recognition-shard1"],
            "sha256": hashlib.sha256(SHARDS["face_recognition-shard1"]).hexdigest(),
        },
    }
    assets.update(overrides)
    return json.dumps({"format": "rostercheck-models", "version": "7", "assets": assets}).encode()


class FakeModelHost:
    """Serves a valid bundle on good.example.com and assorted failures elsewhere."""

    def __init__(self, manifest: bytes = None):
        self.manifest = manifest or manifest_body()
        self.requests = Counter()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host, path = request.url.host, request.url.path
        self.requests[(host, path)] += 1
        name = path.rsplit("/", 1)[-1]

        if host in ("good.example.com", "local.example.com"):
            if name == "bundle_manifest.json":
                return httpx.Response(200, content=self.manifest,
                                      headers={"content-type": "application/json"})
            if name in SHARDS:
                return httpx.Response(200, content=SHARDS[name],
                                      headers={"content-type": "application/octet-stream"})
            return httpx.Response(404)
        if host == "html.example.com":
            # SPA fallback: every path "succeeds" with the index page
            return httpx.Response(200, content=b"<!doctype html><html></html>",
                                  headers={"content-type": "text/html; charset=utf-8"})
        if host == "broken.example.com":
            return httpx.Response(200, content=b"{not json",
                                  headers={"content-type": "application/json"})
        return httpx.Response(404)


def make_resolver(candidates, tmp_path, host=None, **kwargs) -> ModelSourceResolver:
    return ModelSourceResolver(
        candidates,
        cache_dir=tmp_path,
        required_assets=("landmarks_68", "face_recognition"),
        transport=httpx.MockTransport(host or FakeModelHost()),
        **kwargs,
    )


def test_parse_manifest_valid():
    manifest = parse_manifest(manifest_body())

    assert manifest.version == "7"
    assert manifest.assets["landmarks_68"].paths == ("landmarks_68-shard1", "landmarks_68-shard2")


@pytest.mark.parametrize(
    "payload",
    [
        b"<html></html>",
        b"[]",
        json.dumps({"format": "other", "assets": {}}).encode(),
        json.dumps({"format": "rostercheck-models", "assets": {}}).encode(),
        manifest_body(face_recognition={"file": "x.dat", "paths": []}),
        manifest_body(face_recognition={"file": "../x.dat", "paths": ["a"]}),
    ],
)
def test_parse_manifest_invalid(payload):
    with pytest.raises(ValueError):
        parse_manifest(payload)


@pytest.mark.asyncio
async def test_html_candidate_never_selected(tmp_path):
    """A source answering 200 with an HTML page is rejected; the valid one wins."""
    host = FakeModelHost()
    resolver = make_resolver([HTML, GOOD], tmp_path, host)

    bundle = await resolver.resolve()

    assert bundle.source == GOOD
    assert resolver.state == EngineState.READY
    assert bundle.path("landmarks_68").read_bytes() == LANDMARKS
    # The HTML source never got past the probe
    assert all(h != "html.example.com" or p.endswith("bundle_manifest.json")
               for h, p in host.requests)


@pytest.mark.asyncio
async def test_all_candidates_fail(tmp_path):
    """N failing sources give one aggregate error with N named sub-errors, in order."""
    candidates = [HTML, MISSING, BROKEN, "ai_models"]
    resolver = make_resolver(candidates, tmp_path)

    with pytest.raises(AcquisitionFailure) as exc_info:
        await resolver.resolve()

    failures = exc_info.value.failures
    assert len(failures) == 4
    assert [f.source for f in failures] == candidates
    assert "HTML" in failures[0].cause
    assert "404" in failures[1].cause
    assert "invalid manifest" in failures[2].cause
    assert "no asset origin" in failures[3].cause
    assert resolver.state == EngineState.FAILED


@pytest.mark.asyncio
async def test_failed_state_is_sticky_until_fresh(tmp_path):
    host = FakeModelHost()
    resolver = make_resolver([MISSING], tmp_path, host)

    with pytest.raises(AcquisitionFailure):
        await resolver.resolve()
    with pytest.raises(AcquisitionFailure):
        await resolver.resolve()

    assert host.requests[("missing.example.com", "/ai_models/bundle_manifest.json")] == 1

    with pytest.raises(AcquisitionFailure):
        await resolver.resolve(fresh=True)
    assert host.requests[("missing.example.com", "/ai_models/bundle_manifest.json")] == 2


@pytest.mark.asyncio
async def test_missing_required_asset_rejected(tmp_path):
    manifest = json.dumps({
        "format": "rostercheck-models",
        "version": "1",
        "assets": {"landmarks_68": {"file": "lm.dat", "paths": ["landmarks_68-shard1"]}},
    }).encode()
    resolver = make_resolver([GOOD], tmp_path, FakeModelHost(manifest))

    with pytest.raises(AcquisitionFailure) as exc_info:
        await resolver.resolve()

    assert "face_recognition" in exc_info.value.failures[0].cause


@pytest.mark.asyncio
async def test_checksum_mismatch_rejected(tmp_path):
    bad = manifest_body(face_recognition={
        "file": "rec.dat",
        "paths": ["face_recognition-shard1"],
        "sha256": "0" * 64,
    })
    resolver = make_resolver([GOOD], tmp_path, FakeModelHost(bad))

    with pytest.raises(AcquisitionFailure) as exc_info:
        await resolver.resolve()

    assert "checksum" in exc_info.value.failures[0].cause


@pytest.mark.asyncio
async def test_relative_candidate_uses_origin(tmp_path):
    resolver = make_resolver(["/ai_models"], tmp_path, asset_origin="https://local.example.com")

    bundle = await resolver.resolve()

    assert bundle.source == "/ai_models"


@pytest.mark.asyncio
async def test_ready_is_cached(tmp_path):
    host = FakeModelHost()
    resolver = make_resolver([GOOD], tmp_path, host)

    first = await resolver.resolve()
    second = await resolver.resolve()

    assert first is second
    assert host.requests[("good.example.com", "/ai_models/bundle_manifest.json")] == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_resolution(tmp_path):
    host = FakeModelHost()
    resolver = make_resolver([GOOD], tmp_path, host)

    a, b = await asyncio.gather(resolver.resolve(), resolver.resolve())

    assert a is b
    assert host.requests[("good.example.com", "/ai_models/bundle_manifest.json")] == 1


@pytest.mark.asyncio
async def test_cached_assets_not_downloaded_again(tmp_path):
    await make_resolver([GOOD], tmp_path).resolve()

    host = FakeModelHost()
    bundle = await make_resolver([GOOD], tmp_path, host).resolve()

    assert bundle.path("landmarks_68").read_bytes() == LANDMARKS
    shard_requests = [p for (_, p) in host.requests if "shard" in p]
    assert shard_requests == []


@pytest.mark.asyncio
async def test_cache_directory_loads_as_bundle(tmp_path):
    """The per-candidate cache is a complete on-disk bundle."""
    resolver = make_resolver([GOOD], tmp_path)
    bundle = await resolver.resolve()

    local = AssetBundle.from_directory(resolver.cache_path(GOOD))

    assert local.version == "7"
    assert local.path("face_recognition") == bundle.path("face_recognition")


def test_from_directory_missing_asset(tmp_path):
    (tmp_path / "bundle_manifest.json").write_bytes(manifest_body())

    with pytest.raises(FileNotFoundError):
        AssetBundle.from_directory(tmp_path)


def test_resolver_requires_candidates(tmp_path):
    with pytest.raises(ValueError):
        ModelSourceResolver([], cache_dir=tmp_path)


@pytest.mark.asyncio
async def test_stalled_manifest_server_times_out(tmp_path):
    """A server that accepts the request but never answers fails within the deadline."""
    async def stalled(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(2)
        return httpx.Response(200, content=manifest_body(),
                              headers={"content-type": "application/json"})

    resolver = make_resolver([GOOD], tmp_path, host=stalled, probe_timeout=0.1)

    started = time.monotonic()
    with pytest.raises(AcquisitionFailure) as exc_info:
        await resolver.resolve()

    assert time.monotonic() - started < 1.5
    assert "timed out" in exc_info.value.failures[0].cause
    assert resolver.state == EngineState.FAILED
