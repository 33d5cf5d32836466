from __future__ import annotations

from typing import Iterable, Optional, Tuple

import cv2
import numpy as np


def flood_fill(
    edges: np.ndarray,
    seeds: Iterable[Tuple[int, int]],
    threshold: int = 50,
    filled: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Grow a region from `seeds` (x, y) across pixels whose edge strength is below `threshold`.

    4-connected; the fill never enters a pixel at or above the threshold.
    Seeds that are out of bounds, already filled or blocked are skipped.
    Returns a new uint8 (h, w) mask with 1 for every reached pixel, starting
    from `filled` when given.
    """
    h, w = edges.shape
    result = np.zeros((h, w), dtype=np.uint8) if filled is None else (np.asarray(filled) != 0).astype(np.uint8)

    passable = (np.asarray(edges) < threshold).astype(np.uint8)
    # OpenCV wants a mask two pixels larger than the image; non-zero cells block the fill
    fill_mask = np.zeros((h + 2, w + 2), dtype=np.uint8)
    fill_mask[1:-1, 1:-1] = result
    flags = 4 | cv2.FLOODFILL_MASK_ONLY | cv2.FLOODFILL_FIXED_RANGE | (1 << 8)

    for x, y in seeds:
        if not (0 <= x < w and 0 <= y < h):
            continue
        if fill_mask[y + 1, x + 1] or not passable[y, x]:
            continue
        cv2.floodFill(passable, fill_mask, (int(x), int(y)), 1, loDiff=0, upDiff=0, flags=flags)

    return fill_mask[1:-1, 1:-1].copy()
