"""Dlib-space matcher for check-in identification using Euclidean distance.

Reference descriptors of every enrolled identity are stacked into one
read-only matrix. A query is compared against every reference and the global
nearest wins if it lies within the distance threshold.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from rostercheck.core.interfaces import (
    DEEP_DESCRIPTOR_DIM,
    UNKNOWN_LABEL,
    EnrolledIdentity,
    MatchResult,
)
from rostercheck.core.logging_config import get_logger
from rostercheck.core.utils import descriptor_from_record, euclidean_distances

logger = get_logger(__name__)

DEFAULT_THRESHOLD = 0.45


class DescriptorMatcher:
    """Immutable nearest-neighbor matcher over enrolled descriptors.

    Any change to the enrolled set means building a new matcher; an existing
    handle never changes after construction, so it can be shared freely
    between the check-in and enrollment flows.

    Attributes:
        threshold: Maximum Euclidean distance accepted as a match (inclusive)
        dimension: Descriptor dimension (128 for dlib)

    Example:
        >>> matcher = DescriptorMatcher({"U1": [np.zeros(128)]})
        >>> matcher.match(np.zeros(128))
        MatchResult(label='U1', distance=0.0)
    """

    def __init__(
        self,
        references: Mapping[str, Sequence[np.ndarray]],
        threshold: float = DEFAULT_THRESHOLD,
        dimension: int = DEEP_DESCRIPTOR_DIM,
    ):
        """Stack reference descriptors into the lookup matrix.

        Args:
            references: Identity id -> one or more reference descriptors
            threshold: Distance threshold for a positive match
            dimension: Expected descriptor dimension

        Raises:
            ValueError: If no references are given or a descriptor has the
                wrong dimension.
        """
        if threshold <= 0:
            raise ValueError(f"Threshold must be > 0, got {threshold}")

        self.threshold = threshold
        self.dimension = dimension

        rows: List[np.ndarray] = []
        names: List[str] = []

        # Sorted so that ties resolve deterministically to the first label
        for label in sorted(references):
            for descriptor in references[label]:
                vector = np.asarray(descriptor, dtype=np.float32).ravel()
                if vector.shape[0] != dimension:
                    raise ValueError(
                        f"Expected descriptor dimension {dimension} for '{label}', "
                        f"got {vector.shape[0]}"
                    )
                rows.append(vector)
                names.append(label)

        if not rows:
            raise ValueError("DescriptorMatcher needs at least one reference descriptor")

        self._matrix = np.vstack(rows)
        self._matrix.setflags(write=False)
        self._names: Tuple[str, ...] = tuple(names)

        logger.debug(
            f"Matcher built: {len(self._names)} references, "
            f"{len(set(self._names))} identities, threshold={threshold}"
        )

    def __len__(self) -> int:
        return len(self._names)

    @property
    def labels(self) -> List[str]:
        """Unique identity labels, sorted."""
        return sorted(set(self._names))

    def match(self, descriptor: np.ndarray) -> MatchResult:
        """Classify a descriptor against the enrolled references.

        Args:
            descriptor: Query descriptor, shape [128] or [1, 128]

        Returns:
            MatchResult with the nearest label if its distance is within the
            threshold, otherwise "unknown" with the nearest distance.

        Raises:
            ValueError: If the descriptor has the wrong dimension or
                non-finite values.
        """
        query = np.asarray(descriptor, dtype=np.float32)
        if query.ndim == 2 and query.shape[0] == 1:
            query = query[0]

        if query.ndim != 1 or query.shape[0] != self.dimension:
            raise ValueError(
                f"Expected descriptor dimension {self.dimension}, got shape {query.shape}"
            )
        if not np.all(np.isfinite(query)):
            raise ValueError("Descriptor contains non-finite values")

        distances = euclidean_distances(self._matrix, query)
        best_idx = int(np.argmin(distances))
        best_distance = float(distances[best_idx])

        if best_distance <= self.threshold:
            result = MatchResult(label=self._names[best_idx], distance=best_distance)
        else:
            result = MatchResult(label=UNKNOWN_LABEL, distance=best_distance)

        logger.debug(f"Match result: {result.label} (distance={best_distance:.4f})")
        return result

    def __repr__(self) -> str:
        return (
            f"DescriptorMatcher(identities={len(self.labels)}, "
            f"references={len(self)}, threshold={self.threshold})"
        )


def build_matcher(
    identities: Iterable[EnrolledIdentity],
    threshold: float = DEFAULT_THRESHOLD,
    dimension: int = DEEP_DESCRIPTOR_DIM,
) -> Optional[DescriptorMatcher]:
    """Build a matcher from enrolled identity records.

    Identities without a stored descriptor are skipped. Stored descriptors are
    reconstructed strictly from their storage shape; a malformed record fails
    loudly rather than being matched against.

    Args:
        identities: Enrolled identity records
        threshold: Distance threshold for a positive match
        dimension: Expected descriptor dimension

    Returns:
        DescriptorMatcher, or None if no identity has a descriptor.

    Raises:
        ValueError: If a stored descriptor is malformed.
    """
    references: Dict[str, List[np.ndarray]] = {}
    skipped = 0

    for identity in identities:
        if identity.descriptor is None:
            skipped += 1
            continue
        try:
            vector = descriptor_from_record(identity.descriptor, dimension)
        except ValueError as e:
            raise ValueError(f"Malformed descriptor for identity '{identity.id}': {e}") from e
        references.setdefault(identity.id, []).append(vector)

    if skipped:
        logger.debug(f"Skipped {skipped} identities without a stored descriptor")

    if not references:
        logger.info("No enrolled descriptors; matcher not built")
        return None

    return DescriptorMatcher(references, threshold=threshold, dimension=dimension)
