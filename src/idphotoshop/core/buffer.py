from __future__ import annotations

import abc
import io
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np
from PIL import Image

from idphotoshop.core.errors import ContextUnavailable

RGBA = Tuple[int, int, int, int]

TRANSPARENT: RGBA = (0, 0, 0, 0)
WHITE: RGBA = (255, 255, 255, 255)


def _frozen(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, dtype=np.uint8, copy=True, order="C")
    out.setflags(write=False)
    return out


def _as_rgba(arr: np.ndarray) -> np.ndarray:
    """Gray, RGB or RGBA uint8 array -> RGBA array (opaque where alpha is missing)."""
    arr = np.asarray(arr)
    if arr.ndim == 2:
        arr = np.stack([arr, arr, arr], axis=-1)
    if arr.ndim != 3 or arr.shape[-1] not in (3, 4):
        raise ValueError(f"expected an (h, w), (h, w, 3) or (h, w, 4) array, got {arr.shape}")
    if arr.shape[-1] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
        arr = np.concatenate([arr.astype(np.uint8), alpha], axis=-1)
    return arr.astype(np.uint8)


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """
    A rectangular RGBA image, (height, width, 4) uint8.

    The sample array is copied and made read-only on construction: stages
    never share or mutate each other's data, they always return a new buffer.
    """
    samples: np.ndarray

    def __post_init__(self) -> None:
        arr = np.asarray(self.samples)
        if arr.ndim != 3 or arr.shape[-1] != 4:
            raise ValueError(f"PixelBuffer expects (h, w, 4) samples, got {arr.shape}")
        if arr.shape[0] <= 0 or arr.shape[1] <= 0:
            raise ContextUnavailable(f"cannot create a {arr.shape[1]}x{arr.shape[0]} buffer")
        object.__setattr__(self, "samples", _frozen(arr))

    @property
    def width(self) -> int:
        return int(self.samples.shape[1])

    @property
    def height(self) -> int:
        return int(self.samples.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def rgb(self) -> np.ndarray:
        return self.samples[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.samples[:, :, 3]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return self.samples.shape == other.samples.shape and bool(np.array_equal(self.samples, other.samples))

    def __repr__(self) -> str:
        return f"PixelBuffer({self.width}x{self.height})"

    @staticmethod
    def blank(width: int, height: int, color: RGBA = TRANSPARENT) -> "PixelBuffer":
        """Allocate a new buffer filled with `color`; ContextUnavailable if that is impossible."""
        if width <= 0 or height <= 0:
            raise ContextUnavailable(f"cannot create a {width}x{height} buffer")
        try:
            arr = np.empty((int(height), int(width), 4), dtype=np.uint8)
        except (MemoryError, ValueError) as exc:
            raise ContextUnavailable(f"cannot allocate a {width}x{height} buffer") from exc
        arr[:, :] = np.asarray(color, dtype=np.uint8)
        return PixelBuffer(arr)

    @staticmethod
    def from_array(arr: np.ndarray) -> "PixelBuffer":
        return PixelBuffer(_as_rgba(arr))

    @staticmethod
    def from_pil(img: Image.Image) -> "PixelBuffer":
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        return PixelBuffer(np.asarray(img))

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.array(self.samples), "RGBA")

    def encode_png(self) -> bytes:
        """Encode as a standard PNG image."""
        out = io.BytesIO()
        self.to_pil().save(out, format="PNG")
        return out.getvalue()


ImageSource = Union[PixelBuffer, Image.Image]


def as_buffer(image: ImageSource) -> PixelBuffer:
    if isinstance(image, PixelBuffer):
        return image
    if isinstance(image, Image.Image):
        return PixelBuffer.from_pil(image)
    raise TypeError(f"expected a PixelBuffer or PIL image, got {type(image).__name__}")


class _Mask(abc.ABC):
    values: np.ndarray

    def __init__(self, values: np.ndarray) -> None:
        arr = np.asarray(values)
        if arr.ndim != 2:
            raise ValueError(f"mask must be 2-D, got {arr.shape}")
        self.values = _frozen(arr)

    @property
    def width(self) -> int:
        return int(self.values.shape[1])

    @property
    def height(self) -> int:
        return int(self.values.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def check_size(self, buffer: PixelBuffer) -> None:
        if self.size != buffer.size:
            raise ValueError(f"mask is {self.width}x{self.height}, buffer is {buffer.width}x{buffer.height}")

    @abc.abstractmethod
    def alpha(self) -> np.ndarray:
        """Per-pixel alpha (uint8, 255 = keep) this mask applies to a buffer."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.width}x{self.height})"


class BinaryMask(_Mask):
    """Hard classification per pixel: 1 = background, 0 = foreground."""

    def __init__(self, values: np.ndarray) -> None:
        super().__init__((np.asarray(values) != 0).astype(np.uint8))

    @property
    def background(self) -> np.ndarray:
        return self.values.astype(bool)

    def alpha(self) -> np.ndarray:
        return np.where(self.values == 1, 0, 255).astype(np.uint8)


class SoftMask(_Mask):
    """Per-pixel foreground alpha, 0 (background) .. 255 (foreground)."""

    def alpha(self) -> np.ndarray:
        return np.array(self.values)


Mask = Union[BinaryMask, SoftMask]
