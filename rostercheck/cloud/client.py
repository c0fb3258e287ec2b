"""Async client for the cloud inference endpoint.

The client ships one compressed, fixed-size frame per request and gets back a
descriptor in the same 128-D space as the local deep engine.
"""

from __future__ import annotations

from typing import Any, Optional, Union

import httpx
import numpy as np

from rostercheck.core.errors import RateLimitExceeded, TransportFailure
from rostercheck.core.interfaces import DEEP_DESCRIPTOR_DIM, NoFaceResult
from rostercheck.core.logging_config import get_logger
from rostercheck.core.utils import encode_frame_data_uri

logger = get_logger(__name__)


class CloudOffloadClient:
    """Alternate descriptor source backed by a remote endpoint.

    Example:
        >>> client = CloudOffloadClient("https://api.example.com/process-face")
        >>> result = await client.infer(frame)
        >>> if isinstance(result, NoFaceResult):
        ...     print(result.message)
        >>> await client.close()
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 30.0,
        image_size: int = 320,
        jpeg_quality: float = 0.7,
        dimension: int = DEEP_DESCRIPTOR_DIM,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.image_size = image_size
        self.jpeg_quality = jpeg_quality
        self.dimension = dimension
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> CloudOffloadClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def infer(self, frame_bgr: np.ndarray) -> Union[np.ndarray, NoFaceResult]:
        """Extract a descriptor remotely.

        Args:
            frame_bgr: Input image in BGR format, shape [H, W, 3]

        Returns:
            Descriptor, shape [128], dtype float32, or NoFaceResult when the
            endpoint found no face.

        Raises:
            RateLimitExceeded: If the endpoint answered HTTP 429.
            TransportFailure: On any other HTTP error, network failure or
                malformed response body.
        """
        image = encode_frame_data_uri(frame_bgr, self.image_size, self.jpeg_quality)

        try:
            response = await self._client.post(self.endpoint, json={"image": image})
        except httpx.TimeoutException as exc:
            raise TransportFailure("Cloud inference request timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"Cloud inference request failed: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitExceeded(
                f"Cloud endpoint rate limit exceeded: {_error_text(response)}",
                status_code=429,
            )
        if not response.is_success:
            raise TransportFailure(
                f"Cloud endpoint returned {response.status_code}: {_error_text(response)}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise TransportFailure("Cloud endpoint returned a non-JSON body") from exc

        return self._interpret(body)

    def _interpret(self, body: Any) -> Union[np.ndarray, NoFaceResult]:
        if not isinstance(body, dict) or "success" not in body:
            raise TransportFailure(f"Malformed cloud response: {body!r:.200}")

        descriptor = body.get("descriptor")

        if body["success"] is True and descriptor is not None:
            if not isinstance(descriptor, list) or len(descriptor) != self.dimension:
                raise TransportFailure(
                    f"Cloud descriptor must be a list of {self.dimension} numbers"
                )
            try:
                vector = np.asarray(descriptor, dtype=np.float32)
            except (TypeError, ValueError) as exc:
                raise TransportFailure(f"Cloud descriptor is not numeric: {exc}") from exc
            if not np.all(np.isfinite(vector)):
                raise TransportFailure("Cloud descriptor holds non-finite values")
            return vector

        if body["success"] is False and descriptor is None:
            message = body.get("message") or body.get("error") or ""
            logger.debug(f"Cloud endpoint found no face: {message}")
            return NoFaceResult(message=str(message))

        raise TransportFailure(f"Malformed cloud response: {body!r:.200}")


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.text[:200]
