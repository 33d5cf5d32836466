#!/usr/bin/env python3
"""
idphotoshop command line

Compose an identity-document photo at the document's exact pixel size:
- Crops the selected frame (default: largest centred frame with the document's aspect ratio)
- Applies brightness / contrast / exposure
- Removes the background (MediaPipe or rembg, with an edge-based fallback) and fills it

Usage:
  idphotoshop --input in.jpg --output out.jpg --width-mm 35 --height-mm 45 --dpi 300
  idphotoshop -i in.jpg -o out.png --width-mm 35 --height-mm 45 --background transparent
  idphotoshop -i in.jpg -o out.jpg --width-mm 51 --height-mm 51 --center-x 820 --center-y 600 \\
      --frame-width 900 --frame-height 900 --exposure 0.3 --validate

Notes:
- Always verify the final photo against the official requirements of your document.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import Optional

from PIL import Image, ImageOps

from idphotoshop.core.buffer import PixelBuffer
from idphotoshop.core.models import (
    SEGMENTATION_BACKENDS,
    Background,
    DocumentRequirements,
    FrameSelection,
    ProcessingParams,
)
from idphotoshop.processing.compositor import flatten
from idphotoshop.pipeline import compose_photo_sync
from idphotoshop.validation.validator import format_report_text, validate_document_photo

logger = logging.getLogger(__name__)


def _load_image(path: str) -> PixelBuffer:
    """Load an image, apply EXIF orientation, return it as an RGBA buffer."""
    with Image.open(path) as img:
        img = ImageOps.exif_transpose(img)
        return PixelBuffer.from_pil(img)


def _save_image(buffer: PixelBuffer, output_path: str) -> None:
    # Good JPEG quality by default; JPEG has no alpha, so flatten onto white first
    if output_path.lower().endswith((".jpg", ".jpeg")):
        flatten(buffer).to_pil().convert("RGB").save(output_path, format="JPEG", quality=95, optimize=True)
    else:
        buffer.to_pil().save(output_path)


def _frame_from_args(args: argparse.Namespace, image_size, requirements: DocumentRequirements) -> FrameSelection:
    default = FrameSelection.centered(image_size, requirements)
    width = args.frame_width if args.frame_width is not None else default.width
    if args.frame_height is not None:
        height = args.frame_height
    elif args.frame_width is not None:
        height = width / requirements.aspect_ratio
    else:
        height = default.height
    return FrameSelection(
        center_x=args.center_x if args.center_x is not None else default.center_x,
        center_y=args.center_y if args.center_y is not None else default.center_y,
        width=width,
        height=height,
    )


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Compose an ID/passport photo at exact document size.")
    p.add_argument("--input", "-i", required=True, help="Path to input image")
    p.add_argument("--output", "-o", required=True, help="Path to output image (jpg/png)")
    p.add_argument("--width-mm", type=float, required=True, help="Document photo width in millimetres")
    p.add_argument("--height-mm", type=float, required=True, help="Document photo height in millimetres")
    p.add_argument("--dpi", type=float, default=300.0, help="Output resolution (default: 300)")
    p.add_argument(
        "--background",
        choices=[b.value for b in Background],
        default=Background.WHITE.value,
        help="Document background policy (default: white)",
    )
    p.add_argument("--center-x", type=float, help="Frame centre x in source pixels (default: image centre)")
    p.add_argument("--center-y", type=float, help="Frame centre y in source pixels (default: image centre)")
    p.add_argument("--frame-width", type=float, help="Frame width in source pixels")
    p.add_argument("--frame-height", type=float, help="Frame height in source pixels")
    p.add_argument("--brightness", type=float, default=1.0)
    p.add_argument("--contrast", type=float, default=1.0)
    p.add_argument("--exposure", type=float, default=0.0, help="Exposure in stops (output x 2**exposure)")
    p.add_argument("--no-bg", action="store_true", help="Keep the original background")
    p.add_argument("--bg-color", help="Background fill colour, e.g. '#dbe9ff' (overrides the document policy)")
    p.add_argument("--backend", choices=SEGMENTATION_BACKENDS, help="Segmentation model backend")
    p.add_argument("--background-first", action="store_true", help="Remove the background before tone adjustments")
    p.add_argument("--validate", action="store_true", help="Print a compliance report for the result")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        requirements = DocumentRequirements.from_millimetres(
            args.width_mm, args.height_mm, args.dpi, background=Background(args.background)
        )
        params = ProcessingParams(
            brightness=args.brightness,
            contrast=args.contrast,
            exposure=args.exposure,
            remove_background=not args.no_bg,
            background_color=args.bg_color,
            tone_before_background=not args.background_first,
        )
        if args.backend:
            params = replace(params, segmentation_backend=args.backend)

        source = _load_image(args.input)
        frame = _frame_from_args(args, source.size, requirements)
        logger.debug("Source %dx%d, frame %s, output %dx%d", *source.size, frame, *requirements.output_size)

        result = compose_photo_sync(source, frame, requirements, params)
        _save_image(result, args.output)
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    print(f"Saved: {args.output} ({result.width}x{result.height})")
    if args.validate:
        print(format_report_text(validate_document_photo(result, requirements)))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
