"""Core modules for the check-in recognition engine.

This package contains the configuration, logging, error taxonomy, shared
interfaces and utilities used by every other package.
"""

from rostercheck.core.config import Config, get_config
from rostercheck.core.errors import (
    AcquisitionFailure,
    EngineNotReady,
    InferenceFailure,
    RateLimitExceeded,
    RosterCheckError,
    SourceFailure,
    TransportFailure,
)
from rostercheck.core.interfaces import (
    DeepDetection,
    DeepRecognizer,
    DetectionBox,
    EngineState,
    EnrolledIdentity,
    FastDetector,
    MatchResult,
    NoFaceResult,
    QualityReason,
    QualityVerdict,
)
from rostercheck.core.logging_config import get_logger, setup_logging
from rostercheck.core.utils import (
    decode_data_uri,
    descriptor_from_record,
    descriptor_to_record,
    encode_frame_data_uri,
)

__all__ = [
    # Config
    "Config",
    "get_config",
    # Errors
    "AcquisitionFailure",
    "EngineNotReady",
    "InferenceFailure",
    "RateLimitExceeded",
    "RosterCheckError",
    "SourceFailure",
    "TransportFailure",
    # Interfaces
    "DeepDetection",
    "DeepRecognizer",
    "DetectionBox",
    "EngineState",
    "EnrolledIdentity",
    "FastDetector",
    "MatchResult",
    "NoFaceResult",
    "QualityReason",
    "QualityVerdict",
    # Logging
    "setup_logging",
    "get_logger",
    # Utils
    "decode_data_uri",
    "descriptor_from_record",
    "descriptor_to_record",
    "encode_frame_data_uri",
]
