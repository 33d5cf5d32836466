from __future__ import annotations

import asyncio
import io
import logging
import threading
from typing import Awaitable, Callable, Dict, Protocol, Union

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

# Raw RGBA samples, or the same image encoded as PNG
SegmentationInput = Union[np.ndarray, bytes]


class SegmentationCapability(Protocol):
    async def infer(self, source: SegmentationInput) -> np.ndarray:
        """Foreground probability per pixel, float (h, w) in [0, 1]."""
        ...


def _decode_rgb(source: SegmentationInput) -> np.ndarray:
    if isinstance(source, (bytes, bytearray)):
        with Image.open(io.BytesIO(source)) as img:
            return np.array(img.convert("RGB"))
    arr = np.asarray(source)
    if arr.ndim != 3 or arr.shape[-1] not in (3, 4) or arr.dtype != np.uint8:
        raise ValueError(f"Unsupported segmentation input: shape={arr.shape} dtype={arr.dtype}")
    return np.ascontiguousarray(arr[:, :, :3])


class MediaPipeSelfieCapability:
    """MediaPipe selfie segmentation (model 1: landscape, suited to head-and-shoulders shots)."""

    def __init__(self, model_selection: int = 1):
        import mediapipe as mp

        self._model = mp.solutions.selfie_segmentation.SelfieSegmentation(model_selection=model_selection)
        self._lock = threading.Lock()

    def _process(self, rgb: np.ndarray) -> np.ndarray:
        with self._lock:
            result = self._model.process(rgb)
        if result.segmentation_mask is None:
            raise RuntimeError("MediaPipe returned no segmentation mask.")
        return np.asarray(result.segmentation_mask, dtype=np.float32)

    async def infer(self, source: SegmentationInput) -> np.ndarray:
        rgb = _decode_rgb(source)
        return await asyncio.to_thread(self._process, rgb)


class RembgCapability:
    """rembg session producing a person matte (u2net_human_seg by default)."""

    def __init__(self, model_name: str = "u2net_human_seg"):
        from rembg import new_session

        self._session = new_session(model_name)
        self._lock = threading.Lock()

    def _process(self, source: SegmentationInput) -> np.ndarray:
        from rembg import remove

        with self._lock:
            out = remove(source, session=self._session, only_mask=True)
        if isinstance(out, bytes):
            out = Image.open(io.BytesIO(out))
        if isinstance(out, Image.Image):
            arr = np.asarray(out.convert("L"))
        else:
            arr = np.asarray(out)
            if arr.ndim == 3:
                arr = arr[:, :, -1]
        return arr.astype(np.float32) / 255.0

    async def infer(self, source: SegmentationInput) -> np.ndarray:
        if not isinstance(source, (bytes, bytearray)):
            _decode_rgb(source)  # same input contract as the MediaPipe backend
        return await asyncio.to_thread(self._process, source)


async def acquire_mediapipe() -> SegmentationCapability:
    logger.info("Loading MediaPipe selfie segmentation model")
    return await asyncio.to_thread(MediaPipeSelfieCapability)


async def acquire_rembg() -> SegmentationCapability:
    logger.info("Loading rembg session")
    return await asyncio.to_thread(RembgCapability)


Acquirer = Callable[[], Awaitable[SegmentationCapability]]

ACQUIRERS: Dict[str, Acquirer] = {
    "mediapipe": acquire_mediapipe,
    "rembg": acquire_rembg,
}


def acquirer_for(backend: str) -> Acquirer:
    try:
        return ACQUIRERS[backend.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown segmentation backend {backend!r}; expected one of {sorted(ACQUIRERS)}") from None
