from __future__ import annotations

import logging
from typing import List, Tuple

import numpy as np

from idphotoshop.core.buffer import BinaryMask, PixelBuffer
from idphotoshop.segmentation.edges import detect_edges
from idphotoshop.segmentation.flood_fill import flood_fill

logger = logging.getLogger(__name__)

EDGE_THRESHOLD = 50


def corner_seeds(width: int, height: int) -> List[Tuple[int, int]]:
    return [(0, 0), (width - 1, 0), (0, height - 1), (width - 1, height - 1)]


class FallbackSegmenter:
    """
    Classical background detection: Sobel edges + flood fill from the four corners.

    Best effort only. It assumes a roughly centred subject in front of a
    low-texture background that touches every corner; textured backgrounds or
    off-centre subjects will be misclassified.
    """

    def __init__(self, threshold: int = EDGE_THRESHOLD):
        self.threshold = threshold

    def segment(self, buffer: PixelBuffer) -> BinaryMask:
        """BinaryMask with 1 for background (reached from a corner), 0 for foreground."""
        edges = detect_edges(buffer)
        background = np.zeros(edges.shape, dtype=np.uint8)
        for seed in corner_seeds(buffer.width, buffer.height):
            background = flood_fill(edges, [seed], threshold=self.threshold, filled=background)

        logger.debug(
            "Fallback segmentation %dx%d: %.1f%% background",
            buffer.width, buffer.height, 100.0 * float(background.mean()),
        )
        return BinaryMask(background)
