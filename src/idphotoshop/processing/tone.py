from __future__ import annotations

import logging

import numpy as np

from idphotoshop.core.buffer import PixelBuffer

logger = logging.getLogger(__name__)

MID_GRAY = 127.5


def apply_tone(
    buffer: PixelBuffer,
    brightness: float = 1.0,
    contrast: float = 1.0,
    exposure: float = 0.0,
) -> PixelBuffer:
    """
    Brightness/contrast (linear, CSS filter semantics) followed by exposure (x 2**exposure).

    Only RGB is touched; alpha is copied. Each step clamps to [0, 255].
    Parameter ranges are not validated.
    """
    if brightness == 1.0 and contrast == 1.0 and exposure == 0.0:
        return PixelBuffer(buffer.samples)

    logger.debug("Tone: brightness=%s contrast=%s exposure=%s", brightness, contrast, exposure)
    rgb = buffer.rgb.astype(np.float64)
    rgb = np.clip(rgb * brightness, 0.0, 255.0)
    rgb = np.clip((rgb - MID_GRAY) * contrast + MID_GRAY, 0.0, 255.0)
    if exposure != 0.0:
        rgb = np.clip(rgb * (2.0 ** exposure), 0.0, 255.0)

    out = np.empty_like(buffer.samples)
    out[:, :, :3] = np.rint(rgb).astype(np.uint8)
    out[:, :, 3] = buffer.alpha
    return PixelBuffer(out)
