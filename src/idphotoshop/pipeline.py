"""
Document photo composition: crop -> tone / background -> final buffer.

    buffer = compose_photo_sync(image, frame, requirements, ProcessingParams())

Background removal prefers the learned segmentation model and falls back to
the classical edge/flood-fill segmenter whenever the model is unavailable, so
a valid image and frame always produce a photo.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Tuple

from idphotoshop.core.buffer import ImageSource, Mask, PixelBuffer, as_buffer
from idphotoshop.core.errors import SegmentationUnavailable
from idphotoshop.core.models import Background, DocumentRequirements, FrameSelection, ProcessingParams
from idphotoshop.processing.compositor import apply_mask, replace_background
from idphotoshop.processing.crop import crop_to_document
from idphotoshop.processing.tone import apply_tone
from idphotoshop.segmentation.adapter import SegmentationAdapter, default_adapter
from idphotoshop.segmentation.fallback import FallbackSegmenter

logger = logging.getLogger(__name__)

MASK_SOURCE_MODEL = "model"
MASK_SOURCE_FALLBACK = "fallback"


async def segment_with_fallback(
    buffer: PixelBuffer,
    adapter: Optional[SegmentationAdapter],
) -> Tuple[Mask, str]:
    """Mask from the model when possible, otherwise from FallbackSegmenter. Returns (mask, source)."""
    if adapter is not None:
        try:
            return await adapter.segment(buffer), MASK_SOURCE_MODEL
        except SegmentationUnavailable as exc:
            logger.warning("Falling back to edge-based segmentation: %s", exc)
    return FallbackSegmenter().segment(buffer), MASK_SOURCE_FALLBACK


async def remove_background_from(
    buffer: PixelBuffer,
    adapter: Optional[SegmentationAdapter] = None,
) -> Tuple[PixelBuffer, str]:
    """Make the background transparent. Returns (buffer, "model" | "fallback")."""
    mask, source = await segment_with_fallback(buffer, adapter)
    return apply_mask(buffer, mask), source


def background_fill(requirements: DocumentRequirements, params: ProcessingParams) -> Optional[Any]:
    if params.background_color is not None:
        return params.background_color
    if requirements.background is Background.WHITE:
        return (255, 255, 255)
    return None


async def compose_photo(
    image: ImageSource,
    frame: FrameSelection,
    requirements: DocumentRequirements,
    params: Optional[ProcessingParams] = None,
    adapter: Optional[SegmentationAdapter] = None,
) -> PixelBuffer:
    """
    Produce the final document photo at requirements.output_size.

    Raises GeometryDegenerate for an invalid frame (before any allocation) and
    ContextUnavailable when a buffer cannot be created. Segmentation failures
    are absorbed.
    """
    params = params or ProcessingParams()
    frame.validate()

    buffer = crop_to_document(as_buffer(image), frame, requirements)
    if params.remove_background and adapter is None:
        adapter = default_adapter(params.segmentation_backend)

    async def background_stage(buf: PixelBuffer) -> PixelBuffer:
        if params.remove_background:
            buf, source = await remove_background_from(buf, adapter)
            logger.debug("Background removed using %s mask", source)
        return replace_background(buf, background_fill(requirements, params))

    def tone_stage(buf: PixelBuffer) -> PixelBuffer:
        return apply_tone(buf, params.brightness, params.contrast, params.exposure)

    if params.tone_before_background:
        buffer = await background_stage(tone_stage(buffer))
    else:
        buffer = tone_stage(await background_stage(buffer))
    return buffer


def compose_photo_sync(
    image: ImageSource,
    frame: FrameSelection,
    requirements: DocumentRequirements,
    params: Optional[ProcessingParams] = None,
    adapter: Optional[SegmentationAdapter] = None,
) -> PixelBuffer:
    return asyncio.run(compose_photo(image, frame, requirements, params, adapter))
