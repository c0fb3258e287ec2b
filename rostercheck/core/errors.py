"""Error taxonomy for the recognition engine.

Expected negatives (a face rejected by the quality gate, a frame without a
face) are ordinary return values and have no exception here.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class RosterCheckError(RuntimeError):
    """Base class for all errors raised by the recognition engine."""


class SourceFailure(RosterCheckError):
    """One candidate model source failed; names the source and its cause."""

    def __init__(self, source: str, cause: str) -> None:
        self.source = source
        self.cause = cause
        super().__init__(f"{source}: {cause}")


class AcquisitionFailure(RosterCheckError):
    """No model source (or engine) could be loaded.

    Attributes:
        failures: One SourceFailure per attempted candidate, in candidate order.
    """

    def __init__(self, message: str, failures: Sequence[SourceFailure] = ()) -> None:
        self.failures: List[SourceFailure] = list(failures)
        details = "; ".join(str(f) for f in self.failures)
        super().__init__(f"{message} ({details})" if details else message)


class EngineNotReady(RosterCheckError):
    """An engine was invoked before it reached the Ready state."""


class InferenceFailure(RosterCheckError):
    """An engine call failed on a given frame."""

    def __init__(self, engine: str, message: str) -> None:
        self.engine = engine
        super().__init__(f"{engine}: {message}")


class TransportFailure(RosterCheckError):
    """The cloud inference request failed at the network or HTTP level."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RateLimitExceeded(TransportFailure):
    """The cloud endpoint rejected the request because its quota is spent."""
