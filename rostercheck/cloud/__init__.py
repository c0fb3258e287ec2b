"""Cloud offload: the async client and the FastAPI inference endpoint."""

from rostercheck.cloud.client import CloudOffloadClient
from rostercheck.cloud.rate_limit import HourlyRateLimiter

__all__ = [
    "CloudOffloadClient",
    "HourlyRateLimiter",
]
