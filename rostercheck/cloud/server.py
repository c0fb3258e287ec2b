"""FastAPI application serving the cloud inference endpoint.

POST /process-face takes {"image": "<data URI>"} and answers with the 128-D
descriptor of the most confident face. The deep recognizer is loaded lazily on
the first request from the local model directory.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional

import numpy as np
from fastapi import FastAPI, Request
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse, Response

from rostercheck.assets.manifest import AssetBundle
from rostercheck.cloud.rate_limit import HourlyRateLimiter
from rostercheck.core.config import Config
from rostercheck.core.interfaces import DeepRecognizer
from rostercheck.core.logging_config import get_logger
from rostercheck.core.utils import decode_data_uri

logger = get_logger(__name__)

NO_FACE_MESSAGE = "No face detected on the server"
IMAGE_REQUIRED = "Image required"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

RecognizerProvider = Callable[[], DeepRecognizer]


class LazyRecognizer:
    """Load the deep recognizer once, on first use, from a local bundle.

    Tries the accelerated backend first and falls back to the default one,
    the same policy the local orchestrator applies.
    """

    def __init__(self, config: Config):
        self.config = config
        self._recognizer: Optional[DeepRecognizer] = None
        self._lock = threading.Lock()

    def __call__(self) -> DeepRecognizer:
        if self._recognizer is not None:
            return self._recognizer

        with self._lock:
            if self._recognizer is None:
                self._recognizer = self._load()
        return self._recognizer

    def _load(self) -> DeepRecognizer:
        from rostercheck.backends.dlib.recognizer import DlibRecognizer

        bundle = AssetBundle.from_directory(self.config.models_dir, self.config.manifest_name)
        recognizer = DlibRecognizer(
            min_confidence=self.config.deep_min_confidence,
            hog_threshold=self.config.deep_hog_threshold,
        )

        if self.config.prefer_gpu:
            try:
                recognizer.load(bundle, accelerated=True)
                return recognizer
            except RuntimeError as e:
                logger.warning(f"Accelerated recognizer unavailable ({e}); using CPU")

        recognizer.load(bundle, accelerated=False)
        return recognizer


def _extract(recognizer: DeepRecognizer, frame_bgr: np.ndarray) -> Optional[np.ndarray]:
    box = recognizer.detect(frame_bgr)
    if box is None:
        return None
    return recognizer.describe(frame_bgr, box)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def create_app(
    recognizer_provider: Optional[RecognizerProvider] = None,
    limiter: Optional[HourlyRateLimiter] = None,
    config: Optional[Config] = None,
) -> FastAPI:
    """Create the cloud inference application.

    Args:
        recognizer_provider: Callable returning a loaded deep recognizer.
            Defaults to LazyRecognizer over config.models_dir.
        limiter: Request quota. Defaults to config.rate_limit_per_hour per hour.
        config: Configuration object. If None, loads from .env

    Returns:
        FastAPI application.
    """
    if config is None:
        from rostercheck.core.config import get_config

        config = get_config()

    provider = recognizer_provider or LazyRecognizer(config)
    quota = limiter or HourlyRateLimiter(max_requests=config.rate_limit_per_hour)

    app = FastAPI(title="rostercheck cloud inference", version="0.1.0")

    @app.middleware("http")
    async def _cors(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.options("/process-face", include_in_schema=False)
    async def preflight() -> Response:
        return Response(status_code=204)

    @app.post("/process-face")
    async def process_face(request: Request) -> Any:
        """Extract a descriptor from the posted frame."""
        if not quota.allow():
            logger.warning(f"Invocation limit exceeded ({quota.count} this hour)")
            return _error(
                429,
                f"Request limit exceeded ({quota.max_requests} per hour). "
                "Try again in a few minutes.",
            )

        try:
            body = await request.json()
        except ValueError:
            body = None

        image = body.get("image") if isinstance(body, dict) else None
        if not image:
            return _error(500, IMAGE_REQUIRED)

        try:
            frame = decode_data_uri(image)
        except ValueError as e:
            return _error(500, str(e))

        try:
            recognizer = await run_in_threadpool(provider)
            descriptor = await run_in_threadpool(_extract, recognizer, frame)
        except Exception as e:
            logger.error(f"Server-side inference failed: {e}", exc_info=True)
            return _error(500, str(e))

        if descriptor is None:
            return {"success": False, "message": NO_FACE_MESSAGE}

        return {"success": True, "descriptor": [float(v) for v in descriptor]}

    return app
