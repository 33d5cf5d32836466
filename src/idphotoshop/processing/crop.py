from __future__ import annotations

import logging
import math
from typing import Tuple

import cv2
import numpy as np
from PIL import Image

from idphotoshop.core.buffer import TRANSPARENT, WHITE, ImageSource, PixelBuffer, as_buffer
from idphotoshop.core.models import Background, DocumentRequirements, FrameSelection

logger = logging.getLogger(__name__)


def output_size(requirements: DocumentRequirements) -> Tuple[int, int]:
    """Exact (width, height) in pixels of a photo for `requirements`."""
    return requirements.output_size


def _coverage(start: float, length: float, n: int) -> np.ndarray:
    """Fraction of each output cell [i, i + 1) covered by [start, start + length)."""
    idx = np.arange(n, dtype=np.float64)
    lo = np.maximum(idx, start)
    hi = np.minimum(idx + 1.0, start + length)
    return np.clip(hi - lo, 0.0, 1.0)


def _blur_sigma(scale: float) -> float:
    return (1.0 / scale - 1.0) / 2.0 if scale < 1.0 else 0.0


def _antialias(samples: np.ndarray, scale: float) -> np.ndarray:
    """Low-pass the source before shrinking so the warp does not alias."""
    if scale >= 1.0:
        return samples
    sigma = _blur_sigma(scale)
    return cv2.GaussianBlur(samples, (0, 0), sigmaX=sigma, sigmaY=sigma, borderType=cv2.BORDER_REPLICATE)


def _source_window(x0, y0, x1, y1, scale, src_w, src_h) -> Tuple[int, int, int, int]:
    """Integer source window around the clamped region, wide enough for the blur and bilinear taps."""
    margin = int(math.ceil(3.0 * _blur_sigma(scale))) + 2
    return (
        max(0, int(math.floor(x0)) - margin),
        max(0, int(math.floor(y0)) - margin),
        min(src_w, int(math.ceil(x1)) + margin),
        min(src_h, int(math.ceil(y1)) + margin),
    )


def _resample(samples: np.ndarray, matrix: np.ndarray, size: Tuple[int, int], scale: float) -> np.ndarray:
    """Anti-alias and warp `samples` onto an RGBA layer of `size`."""
    if (samples[:, :, 3] == 255).all():
        return cv2.warpAffine(
            _antialias(samples, scale), matrix, size, flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE
        )

    # Filter in premultiplied form so colour under transparent pixels stays out of the edges
    work = samples.astype(np.float32)
    work[:, :, :3] *= work[:, :, 3:4] / 255.0
    warped = cv2.warpAffine(
        _antialias(work, scale), matrix, size, flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE
    )
    alpha = warped[:, :, 3:4]
    rgb = np.where(alpha > 0, warped[:, :, :3] * 255.0 / np.maximum(alpha, 1e-6), 0.0)

    layer = np.empty(warped.shape, dtype=np.uint8)
    layer[:, :, :3] = np.clip(np.rint(rgb), 0, 255)
    layer[:, :, 3] = np.clip(np.rint(alpha[:, :, 0]), 0, 255)
    return layer


def crop_to_document(
    image: ImageSource,
    frame: FrameSelection,
    requirements: DocumentRequirements,
) -> PixelBuffer:
    """
    Map `frame` (source pixels) onto a buffer of the document's exact pixel size.

    The frame is scaled uniformly by output_width / frame.width. Parts of the
    frame outside the source image are not sampled: they keep the canvas fill
    (opaque white for white-background documents, transparent otherwise), and
    the in-bounds part stays exactly where it belongs in the output.
    """
    frame.validate()
    src = as_buffer(image)
    src_w, src_h = src.size
    out_w, out_h = requirements.output_size

    fill = WHITE if requirements.background is Background.WHITE else TRANSPARENT
    canvas = PixelBuffer.blank(out_w, out_h, fill)

    scale = out_w / float(frame.width)
    src_x, src_y = frame.left, frame.top

    # Intersection of the frame with [0, W] x [0, H]
    x0 = max(0.0, src_x)
    y0 = max(0.0, src_y)
    x1 = min(float(src_w), src_x + frame.width)
    y1 = min(float(src_h), src_y + frame.height)

    if x1 <= x0 or y1 <= y0:
        logger.debug("Frame %s lies outside the %dx%d source; returning the blank canvas", frame, src_w, src_h)
        return canvas

    dest_x = (x0 - src_x) * scale
    dest_y = (y0 - src_y) * scale
    dest_w = (x1 - x0) * scale
    dest_h = (y1 - y0) * scale
    logger.debug(
        "Crop %dx%d -> %dx%d: scale=%.4f src=(%.2f, %.2f, %.2f, %.2f) dest=(%.2f, %.2f, %.2f, %.2f)",
        src_w, src_h, out_w, out_h, scale, x0, y0, x1 - x0, y1 - y0, dest_x, dest_y, dest_w, dest_h,
    )

    # Only the clamped region and a filter margin around it are read
    wx0, wy0, wx1, wy1 = _source_window(x0, y0, x1, y1, scale, src_w, src_h)
    window = np.ascontiguousarray(src.samples[wy0:wy1, wx0:wx1])

    # dst = scale * (src - src_origin + 0.5) - 0.5, i.e. pixel centres map onto pixel centres
    matrix = np.array(
        [
            [scale, 0.0, scale * (0.5 - (src_x - wx0)) - 0.5],
            [0.0, scale, scale * (0.5 - (src_y - wy0)) - 0.5],
        ],
        dtype=np.float64,
    )
    # Border replication keeps every read inside the window; the coverage
    # mask below removes whatever lands outside the destination rectangle.
    layer = _resample(window, matrix, (out_w, out_h), scale)

    coverage = np.outer(_coverage(dest_y, dest_h, out_h), _coverage(dest_x, dest_w, out_w))
    layer[:, :, 3] = np.rint(layer[:, :, 3].astype(np.float64) * coverage).astype(np.uint8)

    out = Image.alpha_composite(canvas.to_pil(), Image.fromarray(layer, "RGBA"))
    return PixelBuffer.from_pil(out)
