"""Detection orchestrator: lifecycle and single-flight execution of both engines.

The fast engine gives continuous tracking feedback; the deep engine is the
only local source of identity-grade descriptors. The two have independent
lifecycles, and each runs at most one inference at a time.

Engine state machine:

    NOT_LOADED -> LOADING -> READY   (sticky)
                          -> FAILED  (recoverable only via initialize(fresh=True))
"""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, FrozenSet, Optional

import numpy as np

from rostercheck.assets.manifest import AssetBundle
from rostercheck.assets.resolver import ModelSourceResolver
from rostercheck.core.errors import AcquisitionFailure, EngineNotReady, InferenceFailure
from rostercheck.core.interfaces import (
    DeepDetection,
    DeepRecognizer,
    DetectionBox,
    EngineState,
    FastDetector,
    QualityVerdict,
)
from rostercheck.core.logging_config import get_logger

logger = get_logger(__name__)

# Gate signature: (box, frame_width) -> verdict; QualityGate instances qualify
Gate = Callable[[DetectionBox, float], QualityVerdict]

_TRANSITIONS: Dict[EngineState, FrozenSet[EngineState]] = {
    EngineState.NOT_LOADED: frozenset({EngineState.LOADING}),
    EngineState.LOADING: frozenset({EngineState.READY, EngineState.FAILED}),
    EngineState.READY: frozenset(),
    EngineState.FAILED: frozenset(),
}


class EngineSlot:
    """One engine plus its lifecycle state and single-flight lock."""

    def __init__(self, name: str, engine: object):
        self.name = name
        self.engine = engine
        self.state = EngineState.NOT_LOADED
        self.backend: Optional[str] = None
        self.error: Optional[str] = None
        self.lock = asyncio.Lock()

    def transition(self, new_state: EngineState) -> None:
        """Move to ``new_state``; raise RuntimeError on an illegal transition."""
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"{self.name} engine: illegal transition {self.state.value} -> {new_state.value}"
            )
        logger.debug(f"{self.name} engine: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def reset(self) -> None:
        """Return to NOT_LOADED (explicit fresh resolve only)."""
        self.state = EngineState.NOT_LOADED
        self.backend = None
        self.error = None

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    def release_after(self, work: asyncio.Future) -> None:
        """Done-callback releasing the lock once the worker thread has finished."""
        self.lock.release()
        if not work.cancelled() and work.exception() is not None:
            logger.debug(f"{self.name} engine call finished with {work.exception()!r}")

    def __repr__(self) -> str:
        return f"EngineSlot(name='{self.name}', state={self.state.value}, backend={self.backend})"


class DetectionOrchestrator:
    """Manage the fast detector and the deep recognizer.

    Attributes:
        resolver: Model source resolver providing the asset bundle
        prefer_accelerated: Try the hardware-accelerated backend first

    Example:
        >>> orchestrator = DetectionOrchestrator(resolver, SCRFDDetector(), DlibRecognizer())
        >>> await orchestrator.initialize()
        >>> box = await orchestrator.detect_fast(frame)           # tracking only
        >>> result = await orchestrator.detect_deep(frame, gate)  # identity-grade
    """

    def __init__(
        self,
        resolver: ModelSourceResolver,
        fast_engine: FastDetector,
        deep_engine: DeepRecognizer,
        prefer_accelerated: bool = True,
    ):
        self.resolver = resolver
        self.prefer_accelerated = prefer_accelerated

        self.fast = EngineSlot("fast", fast_engine)
        self.deep = EngineSlot("deep", deep_engine)
        self._init_lock = asyncio.Lock()

    @property
    def state(self) -> EngineState:
        """Combined state: READY only when both engines are ready."""
        states = {self.fast.state, self.deep.state}
        if states == {EngineState.READY}:
            return EngineState.READY
        if EngineState.FAILED in states:
            return EngineState.FAILED
        if EngineState.LOADING in states:
            return EngineState.LOADING
        if EngineState.READY in states:
            return EngineState.LOADING
        return EngineState.NOT_LOADED

    @property
    def is_ready(self) -> bool:
        return self.state == EngineState.READY

    async def initialize(self, fresh: bool = False) -> None:
        """Resolve the model bundle and load both engines concurrently.

        Repeated calls are no-ops once both engines are ready.

        Args:
            fresh: Re-resolve model sources and reload both engines from scratch

        Raises:
            AcquisitionFailure: If the bundle cannot be acquired or an engine
                fails to load on its default backend.
        """
        async with self._init_lock:
            if fresh:
                logger.info("Fresh initialization requested; resetting engines")
                self.fast.reset()
                self.deep.reset()
            elif self.is_ready:
                return

            failed = [s.name for s in (self.fast, self.deep) if s.state == EngineState.FAILED]
            if failed:
                raise AcquisitionFailure(
                    f"Engine(s) {', '.join(failed)} failed earlier; "
                    "call initialize(fresh=True) to retry"
                )

            pending = [s for s in (self.fast, self.deep) if s.state == EngineState.NOT_LOADED]
            for slot in pending:
                slot.transition(EngineState.LOADING)

            try:
                try:
                    bundle = await self.resolver.resolve(fresh=fresh)
                except AcquisitionFailure as e:
                    for slot in pending:
                        slot.error = str(e)
                        slot.transition(EngineState.FAILED)
                    raise

                results = await asyncio.gather(
                    *(self._load(slot, bundle) for slot in pending), return_exceptions=True
                )
            finally:
                # Cancellation or an unexpected error must not strand a slot in LOADING
                for slot in pending:
                    if slot.state == EngineState.LOADING:
                        slot.error = "initialization was interrupted"
                        slot.transition(EngineState.FAILED)

            errors = [r for r in results if isinstance(r, BaseException)]
            for error in errors:
                if not isinstance(error, AcquisitionFailure):
                    raise error
            if errors:
                raise AcquisitionFailure("; ".join(str(e) for e in errors))

            if not self.is_ready:
                raise AcquisitionFailure(f"Engines not ready after initialization: {self!r}")

            logger.info(
                f"Engines ready (fast={self.fast.backend}, deep={self.deep.backend})"
            )

    async def _load(self, slot: EngineSlot, bundle: AssetBundle) -> None:
        engine = slot.engine
        missing = [a for a in engine.required_assets if not bundle.has(a)]
        if missing:
            slot.error = f"bundle is missing {', '.join(missing)}"
            slot.transition(EngineState.FAILED)
            raise AcquisitionFailure(f"{slot.name} engine: {slot.error}")

        if self.prefer_accelerated:
            try:
                slot.backend = await asyncio.to_thread(engine.load, bundle, True)
                slot.transition(EngineState.READY)
                return
            except Exception as e:
                logger.warning(
                    f"{slot.name} engine: accelerated backend unavailable ({e}); "
                    "falling back to default backend"
                )

        try:
            slot.backend = await asyncio.to_thread(engine.load, bundle, False)
        except Exception as e:
            slot.error = str(e)
            slot.transition(EngineState.FAILED)
            logger.error(f"{slot.name} engine failed to load: {e}")
            raise AcquisitionFailure(f"{slot.name} engine failed to load: {e}") from e

        slot.transition(EngineState.READY)

    async def _invoke(self, slot: EngineSlot, wait: bool, fn: Callable, *args):
        if slot.state != EngineState.READY:
            raise EngineNotReady(f"{slot.name} engine is {slot.state.value}")

        # No await between the check and the acquire, so this cannot race
        if not wait and slot.busy:
            logger.debug(f"{slot.name} engine busy; frame dropped")
            return None

        await slot.lock.acquire()
        # The worker thread cannot be interrupted, so the lock is released when
        # it finishes rather than when the caller stops waiting
        work = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        work.add_done_callback(slot.release_after)

        try:
            return await asyncio.shield(work)
        except asyncio.CancelledError:
            logger.debug(f"{slot.name} engine call abandoned; lock held until it finishes")
            raise
        except Exception as e:
            logger.warning(f"{slot.name} engine inference failed: {e}")
            raise InferenceFailure(slot.name, str(e)) from e

    async def detect_fast(self, frame_bgr: np.ndarray, wait: bool = False) -> Optional[DetectionBox]:
        """Fast detection for tracking feedback.

        Args:
            frame_bgr: Input image in BGR format, shape [H, W, 3]
            wait: Wait for an in-flight call instead of dropping this frame

        Returns:
            DetectionBox, or None if no face was found or the frame was dropped.

        Raises:
            EngineNotReady: If the fast engine is not ready.
            InferenceFailure: If the engine failed on this frame.
        """
        return await self._invoke(self.fast, wait, self.fast.engine.detect, frame_bgr)

    async def detect_deep(
        self,
        frame_bgr: np.ndarray,
        gate: Optional[Gate] = None,
        wait: bool = True,
    ) -> Optional[DeepDetection]:
        """Identity-grade detect + landmarks + descriptor pipeline.

        Args:
            frame_bgr: Input image in BGR format, shape [H, W, 3]
            gate: Optional quality gate run between detection and descriptor
                extraction
            wait: Wait for an in-flight call instead of dropping this frame

        Returns:
            DeepDetection (descriptor is None when the gate rejected the face),
            or None if no face was found or the frame was dropped.

        Raises:
            EngineNotReady: If the deep engine is not ready.
            InferenceFailure: If the engine failed on this frame.
        """
        return await self._invoke(self.deep, wait, self._deep_pipeline, frame_bgr, gate)

    def _deep_pipeline(
        self, frame_bgr: np.ndarray, gate: Optional[Gate]
    ) -> Optional[DeepDetection]:
        engine = self.deep.engine
        box = engine.detect(frame_bgr)
        if box is None:
            return None

        verdict = None
        if gate is not None:
            verdict = gate(box, frame_bgr.shape[1])
            if not verdict.accepted:
                return DeepDetection(box=box, verdict=verdict, descriptor=None)

        descriptor = engine.describe(frame_bgr, box)
        return DeepDetection(box=box, verdict=verdict, descriptor=descriptor)

    def __repr__(self) -> str:
        return f"DetectionOrchestrator(fast={self.fast!r}, deep={self.deep!r})"
