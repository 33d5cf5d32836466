from __future__ import annotations


class IDPhotoError(Exception):
    """Base class for errors raised by the photo composition pipeline."""


class ContextUnavailable(IDPhotoError, RuntimeError):
    """A drawing surface (pixel buffer) could not be allocated. Fatal."""


class SegmentationUnavailable(IDPhotoError, RuntimeError):
    """
    The learned segmentation capability could not produce a mask.

    Always chained to the lower-level cause. The pipeline recovers from it by
    switching to the classical fallback segmenter.
    """


class GeometryDegenerate(IDPhotoError, ValueError):
    """A frame or document geometry has a non-positive (or non-finite) extent."""
