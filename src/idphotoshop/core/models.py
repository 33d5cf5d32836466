from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from idphotoshop.core.errors import GeometryDegenerate

# Document sizes are expressed in points (1/72 inch).
UNITS_PER_INCH = 72.0
MM_PER_INCH = 25.4

SEGMENTATION_BACKENDS = ("mediapipe", "rembg")


def default_segmentation_backend() -> str:
    return os.getenv("IDPHOTOSHOP_SEGMENTATION_BACKEND", "mediapipe").strip().lower()


class Background(str, Enum):
    WHITE = "white"
    COLORED = "colored"
    TRANSPARENT = "transparent"


def _range(value: Any) -> Optional[Tuple[float, float]]:
    if value is None:
        return None
    lo, hi = value
    return float(lo), float(hi)


@dataclass(frozen=True)
class HeadConstraints:
    """
    Head size/position guidance attached to a document.

    height_percent:
        Head height (chin -> top of head) as a percentage of photo height, (min, max).
    height_mm:
        Same range in millimetres, when the catalog gives one.
    top_percent / bottom_percent:
        Guideline positions measured from the top of the photo.
    eye_line_mm:
        Eye line distance from the bottom of the photo, (min, max).
    """
    height_percent: Optional[Tuple[float, float]] = None
    height_mm: Optional[Tuple[float, float]] = None
    top_percent: Optional[float] = None
    bottom_percent: Optional[float] = None
    eye_line_mm: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class DocumentRequirements:
    """
    Physical requirements of an identity document photo.

    width_units / height_units are points (1/72 inch); the pixel size of the
    output is derived from them and `dpi`.
    """
    width_units: float
    height_units: float
    dpi: float
    background: Background = Background.WHITE
    head: HeadConstraints = field(default_factory=HeadConstraints)

    def __post_init__(self) -> None:
        for name in ("width_units", "height_units", "dpi"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise GeometryDegenerate(f"{name} must be > 0 (got {value!r})")
        if not isinstance(self.background, Background):
            object.__setattr__(self, "background", Background(self.background))

    @property
    def output_width(self) -> int:
        return int(round(self.width_units / UNITS_PER_INCH * self.dpi))

    @property
    def output_height(self) -> int:
        return int(round(self.height_units / UNITS_PER_INCH * self.dpi))

    @property
    def output_size(self) -> Tuple[int, int]:
        return self.output_width, self.output_height

    @property
    def aspect_ratio(self) -> float:
        return self.width_units / self.height_units

    @staticmethod
    def from_millimetres(
        width_mm: float,
        height_mm: float,
        dpi: float,
        background: Background = Background.WHITE,
        head: Optional[HeadConstraints] = None,
    ) -> "DocumentRequirements":
        factor = UNITS_PER_INCH / MM_PER_INCH
        return DocumentRequirements(
            width_units=width_mm * factor,
            height_units=height_mm * factor,
            dpi=dpi,
            background=Background(background),
            head=head or HeadConstraints(),
        )

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "DocumentRequirements":
        """Build requirements from a document catalog entry (its `requirements` object)."""
        position = data.get("headPosition") or {}
        head = HeadConstraints(
            height_percent=_range(data.get("headHeightPerc")),
            height_mm=_range(data.get("headHeightMM")),
            top_percent=position.get("top"),
            bottom_percent=position.get("bottom"),
            eye_line_mm=_range(position.get("eyeLineMM")),
        )
        return DocumentRequirements(
            width_units=float(data["width"]),
            height_units=float(data["height"]),
            dpi=float(data["dpi"]),
            background=Background(data.get("background", "white")),
            head=head,
        )


@dataclass(frozen=True)
class FrameSelection:
    """Region of the source image to keep, centred at (center_x, center_y), in source pixels."""
    center_x: float
    center_y: float
    width: float
    height: float

    @property
    def left(self) -> float:
        return self.center_x - self.width / 2.0

    @property
    def top(self) -> float:
        return self.center_y - self.height / 2.0

    def validate(self) -> "FrameSelection":
        for name in ("width", "height"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise GeometryDegenerate(f"frame {name} must be > 0 (got {value!r})")
        if not (math.isfinite(self.center_x) and math.isfinite(self.center_y)):
            raise GeometryDegenerate("frame center must be finite")
        return self

    @staticmethod
    def centered(image_size: Tuple[int, int], requirements: DocumentRequirements) -> "FrameSelection":
        """Largest frame with the document's aspect ratio, centred on the image."""
        w, h = image_size
        aspect = requirements.aspect_ratio
        frame_w = float(w)
        frame_h = frame_w / aspect
        if frame_h > h:
            frame_h = float(h)
            frame_w = frame_h * aspect
        return FrameSelection(center_x=w / 2.0, center_y=h / 2.0, width=frame_w, height=frame_h)


@dataclass(frozen=True)
class ProcessingParams:
    """
    Parameters that control how the document photo is composed.

    brightness / contrast / exposure:
        Tone adjustments (1.0 / 1.0 / 0.0 leave the image untouched).
    remove_background:
        If True, segments the subject and drops the original background.
    background_color:
        Fill used behind the subject; None follows the document (white for
        white-background documents, transparent otherwise).
    tone_before_background:
        Stage order: tone filter first (default) or background handling first.
    segmentation_backend:
        "mediapipe" (selfie segmentation) or "rembg".
    """
    brightness: float = 1.0
    contrast: float = 1.0
    exposure: float = 0.0
    remove_background: bool = True
    background_color: Optional[Any] = None
    tone_before_background: bool = True
    segmentation_backend: str = field(default_factory=default_segmentation_backend)
