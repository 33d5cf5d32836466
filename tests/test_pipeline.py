import asyncio
import os
import unittest
from dataclasses import replace
from unittest.mock import patch

import numpy as np

from tests._test_path import SRC  # noqa: F401

from idphotoshop import pipeline
from idphotoshop.core.buffer import PixelBuffer
from idphotoshop.core.errors import GeometryDegenerate
from idphotoshop.core.models import Background, DocumentRequirements, FrameSelection, ProcessingParams
from idphotoshop.segmentation.adapter import SegmentationAdapter

from tests.test_adapter import CountingAcquirer, FakeCapability


def _failing_adapter() -> SegmentationAdapter:
    return SegmentationAdapter(CountingAcquirer([RuntimeError("no model"), RuntimeError("no model")]))


def _portrait(size=200) -> PixelBuffer:
    """Flat light background with a dark centred 'subject'."""
    arr = np.full((size, size, 3), 235, dtype=np.uint8)
    q = size // 4
    arr[q:size - q, q:size - q] = (60, 40, 30)
    return PixelBuffer.from_array(arr)


def _req(w, h, background=Background.WHITE) -> DocumentRequirements:
    return DocumentRequirements(width_units=w, height_units=h, dpi=72, background=background)


class TestComposePhoto(unittest.TestCase):
    def test_end_to_end_passport_size(self):
        rng = np.random.default_rng(11)
        source = PixelBuffer.from_array(rng.integers(0, 256, size=(1000, 1000, 3), dtype=np.uint8))
        req = DocumentRequirements(width_units=99.12, height_units=127.44, dpi=300, background=Background.WHITE)
        frame = FrameSelection(center_x=500, center_y=500, width=413, height=531)
        params = ProcessingParams(remove_background=False)

        out = pipeline.compose_photo_sync(source, frame, req, params)

        self.assertEqual(out.size, (413, 531))
        self.assertTrue((out.alpha == 255).all())
        # frame covers the whole output: no white fill rectangle anywhere
        self.assertFalse(np.all(out.rgb == 255, axis=2).all(axis=0).any())

    def test_model_path_masks_and_fills_white(self):
        adapter = SegmentationAdapter(CountingAcquirer([FakeCapability(reject_arrays=False)]))
        req = _req(100, 100)
        frame = FrameSelection(100, 100, 200, 200)
        out = pipeline.compose_photo_sync(_portrait(), frame, req, ProcessingParams(), adapter)
        self.assertEqual(out.size, (100, 100))
        self.assertTrue((out.alpha == 255).all())
        # FakeCapability keeps the left half; the right half is white fill
        self.assertTrue((out.rgb[:, 80:] == 255).all())

    def test_segmentation_failure_falls_back(self):
        req = _req(100, 100, Background.TRANSPARENT)
        frame = FrameSelection(100, 100, 200, 200)
        out = pipeline.compose_photo_sync(_portrait(), frame, req, ProcessingParams(), _failing_adapter())
        self.assertEqual(out.size, (100, 100))
        self.assertEqual(int(out.alpha[0, 0]), 0)       # background removed by the fallback
        self.assertEqual(int(out.alpha[50, 50]), 255)   # subject kept

    def test_remove_background_from_reports_source(self):
        buf = _portrait(60)

        async def run():
            fallback = await pipeline.remove_background_from(buf, _failing_adapter())
            model = await pipeline.remove_background_from(buf, SegmentationAdapter(CountingAcquirer([FakeCapability()])))
            none = await pipeline.remove_background_from(buf, None)
            return fallback, model, none

        fallback, model, none = asyncio.run(run())
        self.assertEqual(fallback[1], "fallback")
        self.assertEqual(model[1], "model")
        self.assertEqual(none[1], "fallback")

    def test_background_color_override(self):
        req = _req(100, 100, Background.COLORED)
        frame = FrameSelection(100, 100, 200, 200)
        params = ProcessingParams(background_color="#0000ff")
        out = pipeline.compose_photo_sync(_portrait(), frame, req, params, _failing_adapter())
        self.assertEqual(out.samples[0, 0].tolist(), [0, 0, 255, 255])

    def test_colored_without_override_stays_transparent(self):
        req = _req(100, 100, Background.COLORED)
        out = pipeline.compose_photo_sync(_portrait(), FrameSelection(100, 100, 200, 200), req, None, _failing_adapter())
        self.assertEqual(int(out.alpha[0, 0]), 0)

    def test_stage_order(self):
        # Tone first leaves the white fill alone; background first darkens it too.
        req = _req(100, 100)
        frame = FrameSelection(100, 100, 200, 200)
        base = ProcessingParams(exposure=-1.0)
        tone_first = pipeline.compose_photo_sync(_portrait(), frame, req, base, _failing_adapter())
        bg_first = pipeline.compose_photo_sync(
            _portrait(), frame, req, replace(base, tone_before_background=False), _failing_adapter()
        )
        self.assertEqual(tone_first.samples[0, 0].tolist(), [255, 255, 255, 255])
        self.assertEqual(bg_first.samples[0, 0, :3].tolist(), [128, 128, 128])
        np.testing.assert_array_equal(tone_first.rgb[50, 50], bg_first.rgb[50, 50])

    def test_degenerate_frame_rejected_before_work(self):
        with patch.object(pipeline, "crop_to_document") as crop:
            with self.assertRaises(GeometryDegenerate):
                pipeline.compose_photo_sync(_portrait(), FrameSelection(10, 10, -1, 5), _req(10, 10))
            crop.assert_not_called()

    def test_default_adapter_used_when_none_given(self):
        adapter = _failing_adapter()
        with patch.object(pipeline, "default_adapter", return_value=adapter) as factory:
            out = pipeline.compose_photo_sync(
                _portrait(), FrameSelection(100, 100, 200, 200), _req(50, 50), ProcessingParams(segmentation_backend="rembg")
            )
        factory.assert_called_once_with("rembg")
        self.assertEqual(out.size, (50, 50))

    def test_unknown_backend_falls_back(self):
        req = _req(100, 100, Background.TRANSPARENT)
        frame = FrameSelection(100, 100, 200, 200)
        out = pipeline.compose_photo_sync(_portrait(), frame, req, ProcessingParams(segmentation_backend="mediapipe2"))
        self.assertEqual(out.size, (100, 100))
        self.assertEqual(int(out.alpha[0, 0]), 0)
        self.assertEqual(int(out.alpha[50, 50]), 255)

    def test_unknown_backend_from_environment_falls_back(self):
        with patch.dict(os.environ, {"IDPHOTOSHOP_SEGMENTATION_BACKEND": "opencv-magic"}):
            params = ProcessingParams()
        self.assertEqual(params.segmentation_backend, "opencv-magic")
        out = pipeline.compose_photo_sync(_portrait(), FrameSelection(100, 100, 200, 200), _req(100, 100), params)
        self.assertEqual(out.size, (100, 100))
        self.assertEqual(out.samples[0, 0].tolist(), [255, 255, 255, 255])


if __name__ == "__main__":
    unittest.main()
