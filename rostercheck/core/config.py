"""Configuration management for the check-in recognition engine.

This module loads configuration from environment variables (.env file) and
provides a centralized Config class for accessing application settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_PRIMARY_HOST = "https://adccbiometric.web.app/ai_models"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _default_sources(origin: str) -> List[str]:
    """Candidate order mirrors the deployed client: same-origin first, mirror, bare path."""
    base = origin.rstrip("/")
    return [
        f"{base}/ai_models",
        "/ai_models",
        DEFAULT_PRIMARY_HOST,
        "ai_models",
    ]


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        prefer_gpu: Try hardware-accelerated engine backends before CPU
        model_sources: Candidate base locations of the model bundle
        asset_origin: Origin used to resolve relative candidates
        manifest_name: File name of the bundle manifest under each source
        probe_timeout: Seconds allowed for each manifest probe
        download_timeout: Seconds allowed for each shard download
        match_threshold: Euclidean distance threshold for a positive match
        min_face_ratio: Face width / frame width below which a face is too far
        max_face_ratio: Face width / frame width above which a face is too close
        fast_score_threshold: Minimum confidence for the fast detector
        deep_min_confidence: Minimum confidence for the deep CNN detector
        deep_hog_threshold: Minimum SVM score for the deep HOG detectors
        use_cloud: Extract descriptors through the cloud endpoint
        cloud_endpoint: URL of the cloud inference endpoint
        cloud_timeout: Seconds allowed for one offload request
        cloud_quality_gate: Apply the quality gate before offloading a frame
        cloud_image_size: Side of the square canvas sent to the endpoint
        cloud_jpeg_quality: Lossy encoding quality (0.0-1.0) for offloaded frames
        rate_limit_per_hour: Request ceiling of the cloud endpoint per hour
        camera_id: Camera device ID for the webcam scripts
        display: Whether to show a preview window (1) or run headless (0)
    """

    log_level: str
    prefer_gpu: bool
    model_sources: List[str]
    asset_origin: str
    manifest_name: str
    probe_timeout: float
    download_timeout: float
    match_threshold: float
    min_face_ratio: float
    max_face_ratio: float
    fast_score_threshold: float
    deep_min_confidence: float
    deep_hog_threshold: float
    use_cloud: bool
    cloud_endpoint: str
    cloud_timeout: float
    cloud_quality_gate: bool
    cloud_image_size: int
    cloud_jpeg_quality: float
    rate_limit_per_hour: int
    camera_id: int
    display: bool

    # Paths
    models_dir: Path = field(default_factory=lambda: Path("models"))

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment or defaults.

        Raises:
            ValueError: If environment variables hold invalid values.
        """
        # Get project root (parent of rostercheck/)
        project_root = Path(__file__).resolve().parent.parent.parent

        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got {log_level}")

        prefer_gpu = _env_bool("PREFER_GPU", "1")

        # Model acquisition
        asset_origin = os.getenv("ASSET_ORIGIN", "http://localhost:8000")
        raw_sources = os.getenv("MODEL_SOURCES", "")
        model_sources = [s.strip() for s in raw_sources.split(",") if s.strip()]
        if not model_sources:
            model_sources = _default_sources(asset_origin)

        manifest_name = os.getenv("MANIFEST_NAME", "bundle_manifest.json")

        probe_timeout = float(os.getenv("PROBE_TIMEOUT", "3.0"))
        if probe_timeout <= 0:
            raise ValueError(f"PROBE_TIMEOUT must be > 0, got {probe_timeout}")

        download_timeout = float(os.getenv("DOWNLOAD_TIMEOUT", "120.0"))
        if download_timeout <= 0:
            raise ValueError(f"DOWNLOAD_TIMEOUT must be > 0, got {download_timeout}")

        # Matching and admission
        match_threshold = float(os.getenv("MATCH_THRESHOLD", "0.45"))
        if match_threshold <= 0:
            raise ValueError(f"MATCH_THRESHOLD must be > 0, got {match_threshold}")

        min_face_ratio = float(os.getenv("MIN_FACE_RATIO", "0.22"))
        max_face_ratio = float(os.getenv("MAX_FACE_RATIO", "0.60"))
        if not 0.0 < min_face_ratio < max_face_ratio <= 1.0:
            raise ValueError(
                "Face ratio bounds must satisfy 0 < MIN_FACE_RATIO < MAX_FACE_RATIO <= 1, "
                f"got {min_face_ratio} and {max_face_ratio}"
            )

        fast_score_threshold = float(os.getenv("FAST_SCORE_THRESHOLD", "0.5"))
        if not 0.0 <= fast_score_threshold <= 1.0:
            raise ValueError(
                f"FAST_SCORE_THRESHOLD must be between 0.0 and 1.0, got {fast_score_threshold}"
            )

        deep_min_confidence = float(os.getenv("DEEP_MIN_CONFIDENCE", "0.4"))
        if not 0.0 <= deep_min_confidence <= 1.0:
            raise ValueError(
                f"DEEP_MIN_CONFIDENCE must be between 0.0 and 1.0, got {deep_min_confidence}"
            )

        # HOG scores are SVM margins, not probabilities
        deep_hog_threshold = float(os.getenv("DEEP_HOG_THRESHOLD", "0.0"))

        # Cloud offload
        use_cloud = _env_bool("USE_CLOUD", "0")
        cloud_endpoint = os.getenv("CLOUD_ENDPOINT", "http://localhost:8080/process-face")
        cloud_timeout = float(os.getenv("CLOUD_TIMEOUT", "30.0"))
        if cloud_timeout <= 0:
            raise ValueError(f"CLOUD_TIMEOUT must be > 0, got {cloud_timeout}")

        cloud_quality_gate = _env_bool("CLOUD_QUALITY_GATE", "1")

        cloud_image_size = int(os.getenv("CLOUD_IMAGE_SIZE", "320"))
        if cloud_image_size < 32:
            raise ValueError(f"CLOUD_IMAGE_SIZE must be >= 32, got {cloud_image_size}")

        cloud_jpeg_quality = float(os.getenv("CLOUD_JPEG_QUALITY", "0.7"))
        if not 0.0 < cloud_jpeg_quality <= 1.0:
            raise ValueError(
                f"CLOUD_JPEG_QUALITY must be in (0.0, 1.0], got {cloud_jpeg_quality}"
            )

        rate_limit_per_hour = int(os.getenv("RATE_LIMIT_PER_HOUR", "20000"))
        if rate_limit_per_hour < 1:
            raise ValueError(f"RATE_LIMIT_PER_HOUR must be >= 1, got {rate_limit_per_hour}")

        # Camera configuration
        camera_id = int(os.getenv("CAMERA_ID", "0"))
        if camera_id < 0:
            raise ValueError(f"CAMERA_ID must be >= 0, got {camera_id}")

        display = _env_bool("DISPLAY", "1")

        models_dir = Path(os.getenv("MODELS_DIR", str(project_root / "models")))

        return cls(
            log_level=log_level,
            prefer_gpu=prefer_gpu,
            model_sources=model_sources,
            asset_origin=asset_origin,
            manifest_name=manifest_name,
            probe_timeout=probe_timeout,
            download_timeout=download_timeout,
            match_threshold=match_threshold,
            min_face_ratio=min_face_ratio,
            max_face_ratio=max_face_ratio,
            fast_score_threshold=fast_score_threshold,
            deep_min_confidence=deep_min_confidence,
            deep_hog_threshold=deep_hog_threshold,
            use_cloud=use_cloud,
            cloud_endpoint=cloud_endpoint,
            cloud_timeout=cloud_timeout,
            cloud_quality_gate=cloud_quality_gate,
            cloud_image_size=cloud_image_size,
            cloud_jpeg_quality=cloud_jpeg_quality,
            rate_limit_per_hour=rate_limit_per_hour,
            camera_id=camera_id,
            display=display,
            models_dir=models_dir,
        )

    def __repr__(self) -> str:
        """Return string representation of config."""
        return (
            f"Config(\n"
            f"  Backend: {'GPU preferred' if self.prefer_gpu else 'CPU'},\n"
            f"  Sources: {', '.join(self.model_sources)},\n"
            f"  Threshold: {self.match_threshold},\n"
            f"  Face ratio: [{self.min_face_ratio}, {self.max_face_ratio}],\n"
            f"  Cloud: {self.cloud_endpoint if self.use_cloud else 'disabled'},\n"
            f"  Log Level: {self.log_level},\n"
            f"  Models: {self.models_dir}\n"
            f")"
        )


# Global config instance (lazy-loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get global config instance (singleton pattern).

    Returns:
        Config instance loaded from environment.
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None
