import unittest

import numpy as np

from tests._test_path import SRC  # noqa: F401

from idphotoshop.core.buffer import PixelBuffer
from idphotoshop.processing.tone import apply_tone


def _buf(values, alpha=255) -> PixelBuffer:
    arr = np.zeros((1, len(values), 4), dtype=np.uint8)
    arr[0, :, :3] = np.array(values, dtype=np.uint8)[:, None]
    arr[0, :, 3] = alpha
    return PixelBuffer(arr)


class TestApplyTone(unittest.TestCase):
    def test_identity(self):
        rng = np.random.default_rng(3)
        buf = PixelBuffer(rng.integers(0, 256, size=(6, 5, 4), dtype=np.uint8))
        out = apply_tone(buf, 1.0, 1.0, 0.0)
        self.assertEqual(out, buf)
        self.assertIsNot(out, buf)

    def test_brightness_scales_and_clamps(self):
        out = apply_tone(_buf([0, 100, 200]), brightness=1.5)
        self.assertEqual(out.rgb[0, :, 0].tolist(), [0, 150, 255])

    def test_contrast_around_mid_gray(self):
        out = apply_tone(_buf([0, 127, 128, 255]), contrast=0.0)
        self.assertTrue((out.rgb == 128).all())  # 127.5 rounds to even
        out = apply_tone(_buf([100, 155]), contrast=2.0)
        self.assertEqual(out.rgb[0, :, 0].tolist(), [72, 182])

    def test_exposure_doubles_per_stop(self):
        out = apply_tone(_buf([10, 100, 200]), exposure=1.0)
        self.assertEqual(out.rgb[0, :, 0].tolist(), [20, 200, 255])
        out = apply_tone(_buf([10, 100, 200]), exposure=-1.0)
        self.assertEqual(out.rgb[0, :, 0].tolist(), [5, 50, 100])

    def test_exposure_applied_after_brightness(self):
        out = apply_tone(_buf([100]), brightness=3.0, exposure=-1.0)
        # 100 * 3 clamps to 255 before exposure halves it
        self.assertEqual(int(out.rgb[0, 0, 0]), 128)

    def test_alpha_untouched(self):
        buf = _buf([50, 60], alpha=77)
        out = apply_tone(buf, brightness=2.0, contrast=1.3, exposure=0.5)
        self.assertTrue((out.alpha == 77).all())

    def test_negative_contrast_is_passed_through(self):
        out = apply_tone(_buf([0, 255]), contrast=-1.0)
        self.assertEqual(out.rgb[0, :, 0].tolist(), [255, 0])
