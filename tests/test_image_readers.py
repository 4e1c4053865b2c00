import math
import os
import tempfile
import unittest
from pathlib import Path

import dask.array as da
import numpy as np
import tifffile

from n5_exporter.readers.image_readers import (
    AxisType,
    Calibration,
    ImageSource,
    offset_from_calibration,
    read_tiff,
)


class TestImageSource(unittest.TestCase):
    """Tests methods defined in ImageSource class"""

    def test_inferred_axes(self):
        image = ImageSource(np.zeros((4, 8, 16), dtype=np.uint16))
        self.assertEqual(["x", "y", "z"], image.axis_names)
        self.assertEqual((16, 8, 4), image.get_dimensions())
        self.assertEqual(
            [AxisType.SPACE] * 3, image.axis_types
        )
        self.assertIsInstance(image.as_dask_array(), da.Array)

    def test_singleton_axes_are_dropped(self):
        image = ImageSource(
            np.zeros((1, 4, 1, 8, 8), dtype=np.uint8), axes="tzcyx"
        )
        self.assertEqual(["x", "y", "z"], image.axis_names)
        self.assertEqual(1, image.n_channels)
        self.assertEqual(4, image.n_slices)
        self.assertEqual(1, image.n_frames)
        self.assertIsNone(image.channel_axis)

    def test_bad_axes(self):
        with self.assertRaises(ValueError):
            ImageSource(np.zeros((4, 8), dtype=np.uint8), axes="xy")
        with self.assertRaises(ValueError):
            ImageSource(np.zeros((4, 8), dtype=np.uint8), axes="zyx")
        with self.assertRaises(ValueError):
            ImageSource(np.zeros((2, 4), dtype=np.uint8), axes="zy")
        with self.assertRaises(ValueError):
            ImageSource(np.zeros((2,) * 6, dtype=np.uint8))

    def test_rgb_is_packed(self):
        data = np.zeros((2, 3, 3), dtype=np.uint8)
        data[..., 0] = 255
        image = ImageSource(data, axes="yxs")
        self.assertTrue(image.is_rgb)
        self.assertEqual(np.uint32, image.dtype)
        self.assertEqual(
            0xFFFF0000, int(image.as_dask_array()[0, 0].compute())
        )

    def test_channel_view(self):
        data = np.arange(2 * 4 * 6, dtype=np.uint16).reshape((2, 4, 6))
        image = ImageSource(data, axes="cyx")
        self.assertEqual(2, image.channel_axis)
        view = image.channel_view(1)
        self.assertEqual((4, 6), view.shape)
        np.testing.assert_array_equal(data[1], view.compute())
        with self.assertRaises(IndexError):
            image.channel_view(2)

    def test_subsampled_view(self):
        image = ImageSource(np.zeros((3, 5, 7), dtype=np.uint8), axes="tyx")
        # factors are x, y, t
        view = image.subsampled_view((2, 2, 1))
        self.assertEqual((3, 3, 4), view.shape)
        with self.assertRaises(ValueError):
            image.subsampled_view((2, 2))

    def test_scale_and_translation(self):
        cal = Calibration(
            pixel_width=0.5,
            pixel_height=0.25,
            pixel_depth=2.0,
            unit="um",
            x_origin=10,
            frame_interval=3.0,
        )
        image = ImageSource(
            np.zeros((2, 3, 4, 5), dtype=np.uint8), axes="tzyx",
            calibration=cal,
        )
        self.assertEqual([0.5, 0.25, 2.0, 3.0], image.get_scale())
        translation = image.get_translation()
        self.assertEqual([-5.0, 0.0, 0.0, 0.0], translation)
        self.assertEqual(1.0, math.copysign(1.0, translation[1]))
        axes = image.get_axes()
        self.assertEqual("um", axes[0].unit)
        self.assertEqual("sec", axes[3].unit)

    def test_offset_from_calibration(self):
        cal = Calibration(x_origin=4, y_origin=2, z_origin=1)
        image = ImageSource(
            np.zeros((2, 3, 4, 5), dtype=np.uint8), axes="czyx",
            calibration=cal,
        )
        self.assertEqual((4, 2, 0, 1), offset_from_calibration(image))


class TestReadTiff(unittest.TestCase):
    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.tiff_path = Path(self._temp_dir.name) / "stack.tif"
        self.data = np.random.randint(
            0, 1000, size=(4, 8, 8), dtype=np.uint16
        )
        tifffile.imwrite(
            self.tiff_path,
            self.data,
            imagej=True,
            resolution=(2.0, 2.0),
            metadata={"spacing": 3.0, "unit": "um", "axes": "ZYX"},
        )

    def tearDown(self):
        self._temp_dir.cleanup()

    def test_read_tiff(self):
        image = read_tiff(self.tiff_path)
        self.assertEqual("stack", image.title)
        self.assertEqual((8, 8, 4), image.get_dimensions())
        self.assertAlmostEqual(0.5, image.calibration.pixel_width)
        self.assertAlmostEqual(0.5, image.calibration.pixel_height)
        self.assertAlmostEqual(3.0, image.calibration.pixel_depth)
        self.assertEqual("um", image.calibration.unit)
        np.testing.assert_array_equal(
            self.data, image.as_dask_array().compute()
        )
        self.assertTrue(os.path.exists(self.tiff_path))


if __name__ == "__main__":
    unittest.main()
