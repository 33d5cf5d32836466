from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import cv2
import numpy as np

from idphotoshop.core.buffer import PixelBuffer, SoftMask
from idphotoshop.core.errors import SegmentationUnavailable
from idphotoshop.segmentation.capabilities import Acquirer, SegmentationCapability, acquirer_for

logger = logging.getLogger(__name__)


class AdapterState(Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class MaskSettings:
    """
    Fixed mask construction parameters.

    foreground_threshold:
        Probability at or above which a pixel counts as foreground.
    smooth_edges:
        Blur the thresholded mask so the boundary is anti-aliased.
    edge_blur_kernel:
        Gaussian kernel size (odd) used when smoothing.
    """
    foreground_threshold: float = 0.5
    smooth_edges: bool = True
    edge_blur_kernel: int = 5


class SegmentationAdapter:
    """
    Soft foreground masks from a lazily acquired segmentation capability.

    The capability is acquired at most once at a time: concurrent callers
    share one in-flight acquisition and see the same outcome, whichever thread
    or event loop they run on. A successful handle is kept for the adapter's
    lifetime; a failed attempt is forgotten so the next call retries.
    Every failure surfaces as SegmentationUnavailable.
    """

    def __init__(self, acquire: Acquirer, settings: Optional[MaskSettings] = None):
        self._acquire = acquire
        self.settings = settings or MaskSettings()
        # Guards the state transitions only; never held across an await
        self._lock = threading.Lock()
        self._state = AdapterState.UNINITIALIZED
        self._pending: Optional[concurrent.futures.Future] = None
        self._driver: Optional[asyncio.Task] = None
        self._capability: Optional[SegmentationCapability] = None

    @property
    def state(self) -> AdapterState:
        return self._state

    def _settle(self, shared: concurrent.futures.Future, state: AdapterState) -> None:
        with self._lock:
            if self._pending is shared:
                self._state = state
                self._pending = None
                self._driver = None

    async def _acquire_once(self, shared: concurrent.futures.Future) -> None:
        """Run one acquisition and publish its outcome on `shared`."""
        try:
            capability = await self._acquire()
        except asyncio.CancelledError:
            # The owning loop is shutting down; the next caller starts over
            self._settle(shared, AdapterState.UNINITIALIZED)
            shared.set_exception(RuntimeError("Segmentation capability acquisition was interrupted"))
            raise
        except Exception as exc:
            self._settle(shared, AdapterState.FAILED)
            shared.set_exception(exc)
            return
        with self._lock:
            self._capability = capability
            self._state = AdapterState.READY
            if self._pending is shared:
                self._pending = None
                self._driver = None
        logger.info("Segmentation capability ready: %s", type(capability).__name__)
        shared.set_result(capability)

    def _pending_is_stale(self) -> bool:
        if self._pending is None or self._pending.done():
            return True
        # A driver whose event loop was closed can never complete
        return self._driver is not None and self._driver.get_loop().is_closed()

    async def capability(self) -> SegmentationCapability:
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._state is AdapterState.READY and self._capability is not None:
                return self._capability
            if self._pending_is_stale():
                if self._pending is not None and not self._pending.done():
                    self._pending.set_exception(RuntimeError("Segmentation capability acquisition was abandoned"))
                self._state = AdapterState.LOADING
                self._pending = concurrent.futures.Future()
                self._driver = loop.create_task(self._acquire_once(self._pending))
            pending = self._pending
        # A cancelled caller must not cancel the acquisition the others wait on
        return await asyncio.shield(asyncio.wrap_future(pending))

    async def _infer(self, capability: SegmentationCapability, buffer: PixelBuffer) -> np.ndarray:
        try:
            return await capability.infer(buffer.samples)
        except Exception as exc:
            logger.debug("Direct buffer input rejected (%s); retrying with PNG-encoded image", exc)
        return await capability.infer(buffer.encode_png())

    def _to_soft_mask(self, probabilities: np.ndarray, buffer: PixelBuffer) -> SoftMask:
        prob = np.asarray(probabilities, dtype=np.float32)
        if prob.ndim == 3:
            prob = prob[:, :, 0]
        if prob.ndim != 2 or prob.size == 0:
            raise ValueError(f"Unexpected segmentation output shape {prob.shape}")
        if not np.isfinite(prob).all():
            raise ValueError("Segmentation output contains non-finite values")
        if prob.shape != (buffer.height, buffer.width):
            prob = cv2.resize(prob, (buffer.width, buffer.height), interpolation=cv2.INTER_LINEAR)

        # foreground -> opaque, background -> transparent
        alpha = np.where(prob >= self.settings.foreground_threshold, 255.0, 0.0).astype(np.float32)
        if self.settings.smooth_edges:
            k = max(1, int(self.settings.edge_blur_kernel)) | 1
            alpha = cv2.GaussianBlur(alpha, (k, k), 0)
        return SoftMask(np.clip(np.rint(alpha), 0, 255).astype(np.uint8))

    async def segment(self, buffer: PixelBuffer) -> SoftMask:
        try:
            capability = await self.capability()
            probabilities = await self._infer(capability, buffer)
            return self._to_soft_mask(probabilities, buffer)
        except Exception as exc:
            logger.warning("Segmentation unavailable: %s: %s", type(exc).__name__, exc)
            raise SegmentationUnavailable(f"Segmentation failed: {exc}") from exc


_default_adapters: Dict[str, SegmentationAdapter] = {}
_default_lock = threading.Lock()


def _unknown_backend(message: str) -> Acquirer:
    async def acquire() -> SegmentationCapability:
        raise ValueError(message)

    return acquire


def default_adapter(backend: str = "mediapipe") -> SegmentationAdapter:
    """
    Process-wide adapter for `backend`, created on first use.

    An unknown backend name still yields an adapter; its acquisition always
    fails, so callers see SegmentationUnavailable and can fall back.
    """
    key = backend.strip().lower()
    with _default_lock:
        adapter = _default_adapters.get(key)
        if adapter is None:
            try:
                acquire = acquirer_for(key)
            except ValueError as exc:
                logger.warning("%s; segmentation will use the fallback", exc)
                acquire = _unknown_backend(str(exc))
            adapter = SegmentationAdapter(acquire)
            _default_adapters[key] = adapter
        return adapter
