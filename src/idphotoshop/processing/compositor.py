from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as np
from PIL import Image, ImageColor

from idphotoshop.core.buffer import Mask, PixelBuffer


def parse_color(color: Any) -> Tuple[int, int, int, int]:
    """'#rrggbb', 'white', (r, g, b) or (r, g, b, a) -> RGBA tuple."""
    if isinstance(color, str):
        rgba = ImageColor.getcolor(color, "RGBA")
    else:
        rgba = tuple(int(c) for c in color)
        if len(rgba) == 3:
            rgba = rgba + (255,)
    if len(rgba) != 4 or any(c < 0 or c > 255 for c in rgba):
        raise ValueError(f"Invalid color: {color!r}")
    return rgba  # type: ignore[return-value]


def apply_mask(buffer: PixelBuffer, mask: Mask) -> PixelBuffer:
    """
    Multiply the buffer's alpha by the mask's foreground alpha.

    RGB passes through unchanged. A binary mask zeroes the alpha of
    background pixels and leaves foreground pixels as they were.
    """
    mask.check_size(buffer)
    alpha = buffer.alpha.astype(np.uint32) * mask.alpha().astype(np.uint32)
    out = np.array(buffer.samples)
    out[:, :, 3] = ((alpha + 127) // 255).astype(np.uint8)
    return PixelBuffer(out)


def replace_background(buffer: PixelBuffer, color: Optional[Any]) -> PixelBuffer:
    """Fill with `color`, then alpha-composite the buffer on top. None leaves the buffer as is."""
    if color is None:
        return buffer
    fill = Image.new("RGBA", buffer.size, parse_color(color))
    return PixelBuffer.from_pil(Image.alpha_composite(fill, buffer.to_pil()))


def flatten(buffer: PixelBuffer, color: Any = (255, 255, 255)) -> PixelBuffer:
    """Composite over an opaque `color` and drop transparency (for JPEG and similar encoders)."""
    rgba = parse_color(color)
    out = np.array(replace_background(buffer, rgba[:3] + (255,)).samples)
    out[:, :, 3] = 255
    return PixelBuffer(out)
