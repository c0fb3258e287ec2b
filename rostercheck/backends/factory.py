"""Pipeline factory for the check-in recognition engine.

This module wires the components for one process:
- ModelSourceResolver over the configured candidate sources
- SCRFD fast detector (InsightFace) + dlib deep recognizer
- DetectionOrchestrator, QualityGate, optional CloudOffloadClient
- CheckInService and EnrollmentService

Usage:
    components = create_pipeline(config)
    await components.orchestrator.initialize()
    components.checkin.replace_identities(identities)
    result = await components.checkin.identify(frame)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from rostercheck.assets.resolver import ModelSourceResolver
from rostercheck.cloud.client import CloudOffloadClient
from rostercheck.core.config import Config
from rostercheck.core.interfaces import DeepRecognizer, FastDetector
from rostercheck.core.logging_config import get_logger
from rostercheck.services.checkin import CheckInService
from rostercheck.services.enrollment import EnrollmentService
from rostercheck.services.orchestrator import DetectionOrchestrator
from rostercheck.services.quality import QualityGate

logger = get_logger(__name__)


@dataclass
class PipelineComponents:
    """Container for pipeline components.

    Attributes:
        resolver: Model source resolver (one per process)
        orchestrator: Engine orchestrator
        gate: Quality gate
        cloud: Cloud offload client, None when offload is disabled
        checkin: Check-in service
        enrollment: Enrollment service
    """

    resolver: ModelSourceResolver
    orchestrator: DetectionOrchestrator
    gate: QualityGate
    cloud: Optional[CloudOffloadClient]
    checkin: CheckInService
    enrollment: EnrollmentService

    async def close(self) -> None:
        """Release network resources."""
        if self.cloud is not None:
            await self.cloud.close()


def create_engines(config: Config) -> tuple[FastDetector, DeepRecognizer]:
    """Create the default fast and deep engines (weights load later).

    InsightFace and dlib are imported here so that code paths that never
    touch the engines do not pay for (or require) them.
    """
    from rostercheck.backends.dlib.recognizer import DlibRecognizer
    from rostercheck.backends.insightface.detector import SCRFDDetector

    fast = SCRFDDetector(score_threshold=config.fast_score_threshold)
    deep = DlibRecognizer(
        min_confidence=config.deep_min_confidence,
        hog_threshold=config.deep_hog_threshold,
    )
    return fast, deep


def create_pipeline(
    config: Config | None = None,
    *,
    fast_engine: FastDetector | None = None,
    deep_engine: DeepRecognizer | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    cloud_transport: httpx.AsyncBaseTransport | None = None,
) -> PipelineComponents:
    """Create all check-in pipeline components.

    Args:
        config: Configuration object. If None, loads from .env
        fast_engine: Fast detector override (defaults to SCRFD)
        deep_engine: Deep recognizer override (defaults to dlib)
        transport: httpx transport for model downloads (tests)
        cloud_transport: httpx transport for the cloud client (tests)

    Returns:
        PipelineComponents; call ``orchestrator.initialize()`` before use.

    Example:
        >>> from rostercheck.core.config import get_config
        >>> components = create_pipeline(get_config())
        >>> await components.orchestrator.initialize()
    """
    if config is None:
        from rostercheck.core.config import get_config

        config = get_config()

    if fast_engine is None or deep_engine is None:
        default_fast, default_deep = create_engines(config)
        fast_engine = fast_engine or default_fast
        deep_engine = deep_engine or default_deep

    required = tuple(fast_engine.required_assets) + tuple(deep_engine.required_assets)

    resolver = ModelSourceResolver(
        candidates=config.model_sources,
        cache_dir=config.models_dir / "cache",
        required_assets=required,
        asset_origin=config.asset_origin,
        manifest_name=config.manifest_name,
        probe_timeout=config.probe_timeout,
        download_timeout=config.download_timeout,
        transport=transport,
    )

    orchestrator = DetectionOrchestrator(
        resolver, fast_engine, deep_engine, prefer_accelerated=config.prefer_gpu
    )
    gate = QualityGate(config.min_face_ratio, config.max_face_ratio)

    cloud = None
    if config.use_cloud:
        cloud = CloudOffloadClient(
            config.cloud_endpoint,
            timeout=config.cloud_timeout,
            image_size=config.cloud_image_size,
            jpeg_quality=config.cloud_jpeg_quality,
            transport=cloud_transport,
        )

    checkin = CheckInService(
        orchestrator,
        gate,
        cloud=cloud,
        use_cloud=config.use_cloud,
        cloud_quality_gate=config.cloud_quality_gate,
        threshold=config.match_threshold,
    )
    enrollment = EnrollmentService(checkin)

    logger.info(
        f"Pipeline created (engines={fast_engine.name}+{deep_engine.name}, "
        f"sources={len(config.model_sources)}, cloud={'on' if cloud else 'off'})"
    )

    return PipelineComponents(
        resolver=resolver,
        orchestrator=orchestrator,
        gate=gate,
        cloud=cloud,
        checkin=checkin,
        enrollment=enrollment,
    )
