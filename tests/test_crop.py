import unittest

import numpy as np
from PIL import Image

from tests._test_path import SRC  # noqa: F401

from idphotoshop.core.buffer import PixelBuffer
from idphotoshop.core.errors import GeometryDegenerate
from idphotoshop.core.models import Background, DocumentRequirements, FrameSelection
from idphotoshop.processing.crop import crop_to_document, output_size


def _req(width_px: int, height_px: int, background=Background.WHITE) -> DocumentRequirements:
    # At 72 dpi one unit is one pixel
    return DocumentRequirements(width_units=width_px, height_units=height_px, dpi=72, background=background)


def _solid(w: int, h: int, rgb=(200, 30, 30)) -> PixelBuffer:
    return PixelBuffer.from_array(np.full((h, w, 3), rgb, dtype=np.uint8))


class TestCropToDocument(unittest.TestCase):
    def test_output_size_matches_requirements_for_any_frame(self):
        src = _solid(50, 40)
        req = DocumentRequirements.from_millimetres(35, 45, 300)
        frames = [
            FrameSelection(25, 20, 35, 45),       # inside
            FrameSelection(0, 0, 35, 45),         # partly outside
            FrameSelection(-500, -500, 35, 45),   # fully outside
            FrameSelection(25, 20, 700, 900),     # larger than the source
        ]
        for frame in frames:
            out = crop_to_document(src, frame, req)
            self.assertEqual(out.size, output_size(req))
            self.assertEqual(out.size, (413, 531))

    def test_frame_inside_source_is_exact_region(self):
        rng = np.random.default_rng(7)
        arr = rng.integers(0, 256, size=(20, 20, 3), dtype=np.uint8)
        src = PixelBuffer.from_array(arr)
        # left = 6, top = 7, scale 1
        out = crop_to_document(src, FrameSelection(10, 10, 8, 6), _req(8, 6))
        np.testing.assert_array_equal(out.rgb, arr[7:13, 6:14])
        self.assertTrue((out.alpha == 255).all())

    def test_uniform_scale_without_distortion(self):
        # 2x upscale of a frame that is 4 wide and 2 high
        arr = np.zeros((10, 10, 3), dtype=np.uint8)
        arr[:, :5] = (255, 0, 0)
        arr[:, 5:] = (0, 0, 255)
        out = crop_to_document(PixelBuffer.from_array(arr), FrameSelection(5, 5, 4, 2), _req(8, 4))
        self.assertEqual(out.size, (8, 4))
        # left half red, right half blue, boundary stays in the middle
        self.assertTrue((out.rgb[:, :3] == (255, 0, 0)).all())
        self.assertTrue((out.rgb[:, 5:] == (0, 0, 255)).all())

    def test_out_of_bounds_filled_white_and_content_not_shifted(self):
        src = _solid(10, 10)
        # left/top = -5: the source lands in the bottom-right quadrant
        out = crop_to_document(src, FrameSelection(0, 0, 10, 10), _req(10, 10))
        self.assertTrue((out.rgb[5:, 5:] == (200, 30, 30)).all())
        self.assertTrue((out.rgb[:5, :] == 255).all())
        self.assertTrue((out.rgb[:, :5] == 255).all())
        self.assertTrue((out.alpha == 255).all())

    def test_out_of_bounds_transparent_policy(self):
        src = _solid(10, 10)
        out = crop_to_document(src, FrameSelection(10, 10, 10, 10), _req(20, 20, Background.TRANSPARENT))
        # scale 2: source covers [0, 5) of the frame -> output [0, 10)
        self.assertTrue((out.alpha[:10, :10] == 255).all())
        self.assertTrue((out.rgb[:10, :10] == (200, 30, 30)).all())
        self.assertTrue((out.alpha[10:, :] == 0).all())
        self.assertTrue((out.alpha[:, 10:] == 0).all())

    def test_gradient_content_keeps_position_when_clamped(self):
        cols = np.arange(10, dtype=np.uint8) * 20
        arr = np.repeat(np.repeat(cols[None, :, None], 10, axis=0), 3, axis=2)
        out = crop_to_document(
            PixelBuffer.from_array(arr), FrameSelection(2, 5, 10, 10), _req(10, 10, Background.TRANSPARENT)
        )
        # frame left = -3: output column x shows source column x - 3
        self.assertTrue((out.alpha[:, :3] == 0).all())
        np.testing.assert_array_equal(out.rgb[0, 3:, 0], cols[:7])

    def test_transparent_colour_does_not_bleed_when_shrinking(self):
        arr = np.zeros((20, 40, 4), dtype=np.uint8)
        arr[:, :20] = (255, 0, 0, 0)       # invisible red
        arr[:, 20:] = (40, 40, 40, 255)    # opaque gray
        src = PixelBuffer(arr)
        out = crop_to_document(src, FrameSelection(20, 10, 40, 20), _req(10, 5, Background.TRANSPARENT))

        visible = out.alpha > 0
        edge = visible & (out.alpha < 255)
        self.assertTrue(edge.any())
        rgb = out.rgb.astype(int)
        np.testing.assert_array_equal(rgb[visible][:, 0], rgb[visible][:, 1])
        self.assertTrue((np.abs(rgb[visible] - 40) <= 1).all())

    def test_fully_outside_gives_blank_canvas(self):
        out = crop_to_document(_solid(10, 10), FrameSelection(100, 100, 10, 10), _req(10, 10))
        self.assertTrue((out.samples == 255).all())

    def test_accepts_pil_image(self):
        img = Image.new("RGB", (30, 30), (0, 128, 0))
        out = crop_to_document(img, FrameSelection(15, 15, 10, 10), _req(10, 10))
        self.assertTrue((out.rgb == (0, 128, 0)).all())

    def test_degenerate_frame_rejected(self):
        with self.assertRaises(GeometryDegenerate):
            crop_to_document(_solid(10, 10), FrameSelection(5, 5, 0, 10), _req(10, 10))

    def test_input_not_modified(self):
        src = _solid(10, 10)
        before = np.array(src.samples)
        crop_to_document(src, FrameSelection(0, 0, 10, 10), _req(10, 10))
        np.testing.assert_array_equal(src.samples, before)


if __name__ == "__main__":
    unittest.main()
