from __future__ import annotations

import numpy as np

from idphotoshop.core.buffer import PixelBuffer

SOBEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
SOBEL_Y = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float64)


def grayscale(buffer: PixelBuffer) -> np.ndarray:
    """Unweighted mean of R, G and B as float64 (h, w)."""
    return buffer.rgb.astype(np.float64).mean(axis=2)


def _correlate3x3(gray: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """3x3 correlation over interior pixels; result is (h - 2, w - 2)."""
    h, w = gray.shape
    acc = np.zeros((h - 2, w - 2), dtype=np.float64)
    for ky in range(3):
        for kx in range(3):
            k = kernel[ky, kx]
            if k:
                acc += k * gray[ky:ky + h - 2, kx:kx + w - 2]
    return acc


def detect_edges(buffer: PixelBuffer) -> np.ndarray:
    """
    Sobel gradient magnitude, min(255, sqrt(gx^2 + gy^2)), as uint8 (h, w).

    Border pixels have no full neighbourhood and stay 0.
    """
    h, w = buffer.height, buffer.width
    edges = np.zeros((h, w), dtype=np.uint8)
    if h < 3 or w < 3:
        return edges

    gray = grayscale(buffer)
    gx = _correlate3x3(gray, SOBEL_X)
    gy = _correlate3x3(gray, SOBEL_Y)
    magnitude = np.minimum(255.0, np.sqrt(gx * gx + gy * gy))
    edges[1:-1, 1:-1] = np.floor(magnitude).astype(np.uint8)
    return edges
