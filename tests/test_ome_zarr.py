import math
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import numpy as np
from parameterized import parameterized

from n5_exporter.readers.image_readers import (
    AxisType,
    Calibration,
    ImageSource,
)
from n5_exporter.transformations.metadata import OmeNgffMetadata
from n5_exporter.transformations.ome_zarr import (
    MultiscaleManifest,
    PyramidLevel,
    compute_coordinate_transformations,
    update_downsampling_factors,
    write_multiscale_pyramid,
)
from n5_exporter.writers.chunk_writer import ConcurrentChunkWriter
from n5_exporter.writers.containers import open_container
from n5_exporter.writers.dataset_writer import DatasetWriter, OverwriteOption


def _scale(level):
    return level.coordinate_transformations[0]["scale"]


class TestOmeZarr(unittest.TestCase):
    """Tests methods defined in n5_exporter.transformations.ome_zarr"""

    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self._temp_dir.name)

    def tearDown(self):
        self._temp_dir.cleanup()

    def _writer(self, container, overwrite=OverwriteOption.OVERWRITE):
        return DatasetWriter(
            container,
            ConcurrentChunkWriter(n_threads=4, progress_sink=lambda f: None),
            overwrite,
        )

    def test_three_level_pyramid(self):
        data = np.random.randint(0, 255, size=(256, 256), dtype=np.uint8)
        image = ImageSource(data, title="plane")
        with open_container(self.root / "out.zarr") as container:
            levels = write_multiscale_pyramid(
                image, container, "data", (64, 64), None, 3,
                self._writer(container),
            )
            self.assertEqual(["s0", "s1", "s2"], [lvl.path for lvl in levels])
            self.assertEqual([1.0, 1.0], _scale(levels[0]))
            self.assertEqual([2.0, 2.0], _scale(levels[1]))
            self.assertEqual([4.0, 4.0], _scale(levels[2]))
            for i, level in enumerate(levels):
                self.assertEqual(
                    (256 // 2 ** i, 256 // 2 ** i),
                    level.attributes.dimensions,
                )
            np.testing.assert_array_equal(
                data[::4, ::4], container.read("data/s2")
            )

            multiscale = container.get_attributes("data")["multiscales"][0]
            self.assertEqual("0.4", multiscale["version"])
            self.assertEqual("plane", multiscale["name"])
            self.assertEqual(
                ["s0", "s1", "s2"],
                [d["path"] for d in multiscale["datasets"]],
            )
            self.assertEqual(
                [{"type": "scale", "scale": [4.0, 4.0]}],
                multiscale["datasets"][2]["coordinateTransformations"],
            )
            self.assertEqual(
                ["y", "x"], [a["name"] for a in multiscale["axes"]]
            )
            self.assertEqual(
                [{"type": "scale", "scale": [2.0, 2.0]}],
                container.get_attributes("data/s1")[
                    "coordinateTransformations"
                ],
            )

    def test_time_is_never_downsampled(self):
        cal = Calibration(frame_interval=5.0)
        image = ImageSource(
            np.zeros((3, 64, 64), dtype=np.uint16), axes="tyx",
            calibration=cal,
        )
        with open_container(self.root / "out.n5") as container:
            levels = write_multiscale_pyramid(
                image, container, "data", (32, 32, 1), None, 3,
                self._writer(container),
            )
            # N5 lists the fastest-varying axis first
            self.assertEqual([1, 2, 4], [lvl.factors[0] for lvl in levels])
            self.assertEqual([1, 1, 1], [lvl.factors[2] for lvl in levels])
            self.assertEqual([5.0, 5.0, 5.0], [_scale(l)[2] for l in levels])
            self.assertEqual((16, 16, 3), levels[2].attributes.dimensions)
            axes = container.get_attributes("data")["multiscales"][0]["axes"]
            self.assertEqual(["x", "y", "t"], [a["name"] for a in axes])

    def test_translation_is_carried_unchanged(self):
        cal = Calibration(
            pixel_width=0.5, pixel_height=0.5, x_origin=10, y_origin=4
        )
        image = ImageSource(
            np.zeros((64, 64), dtype=np.uint8), calibration=cal
        )
        with open_container(self.root / "out.zarr") as container:
            levels = write_multiscale_pyramid(
                image, container, "", (32, 32), None, 2,
                self._writer(container),
            )
            for level in levels:
                self.assertEqual(
                    {"type": "translation", "translation": [-2.0, -5.0]},
                    level.coordinate_transformations[1],
                )
            self.assertTrue(container.dataset_exists("s1"))
            self.assertIn("multiscales", container.get_attributes(""))

    def test_level_metadata_failure_is_not_fatal(self):
        image = ImageSource(np.zeros((64, 64), dtype=np.uint8))
        with open_container(self.root / "out.zarr") as container:
            with patch.object(
                OmeNgffMetadata, "write", side_effect=OSError("read only")
            ):
                with self.assertLogs(
                    "n5_exporter.transformations.ome_zarr", level="ERROR"
                ):
                    levels = write_multiscale_pyramid(
                        image, container, "data", (32, 32), None, 3,
                        self._writer(container),
                    )
            self.assertEqual(3, len(levels))
            self.assertTrue(container.dataset_exists("data/s2"))
            self.assertIn("multiscales", container.get_attributes("data"))

    def test_refuse_applies_per_level(self):
        first = np.ones((64, 64), dtype=np.uint8)
        with open_container(self.root / "out.zarr") as container:
            write_multiscale_pyramid(
                ImageSource(first), container, "data", (32, 32), None, 2,
                self._writer(container),
            )
            write_multiscale_pyramid(
                ImageSource(first * 2), container, "data", (32, 32), None, 2,
                self._writer(container, OverwriteOption.NO_OVERWRITE),
            )
            np.testing.assert_array_equal(first, container.read("data/s0"))

    def test_num_scales_must_be_positive(self):
        image = ImageSource(np.zeros((8, 8), dtype=np.uint8))
        with open_container(self.root / "out.zarr") as container:
            with self.assertRaises(ValueError):
                write_multiscale_pyramid(
                    image, container, "data", (8, 8), None, 0,
                    self._writer(container),
                )

    @parameterized.expand(
        [
            ((1, 1), (256, 256), (2, 2)),
            ((2, 2), (3, 100), (2, 4)),
            ((1, 1, 1), (64, 64, 10), (2, 2, 1)),
        ]
    )
    def test_update_downsampling_factors(self, factors, dims, expected):
        types = [AxisType.SPACE, AxisType.SPACE, AxisType.TIME][: len(dims)]
        self.assertEqual(
            expected, update_downsampling_factors(factors, dims, types)
        )

    def test_coordinate_transformations(self):
        self.assertEqual(
            [{"type": "scale", "scale": [1.0, 2.0]}],
            compute_coordinate_transformations([1, 2], [0, 0]),
        )
        transforms = compute_coordinate_transformations([1, 2], [0, 3])
        self.assertEqual("translation", transforms[1]["type"])
        self.assertFalse(math.isnan(transforms[1]["translation"][1]))

    def test_manifest_needs_levels(self):
        with self.assertRaises(ValueError):
            MultiscaleManifest("data", "empty", [], True).validate()

    def _manifest(self, is_c_order):
        axes = [{"name": "y", "type": "space"}, {"name": "x", "type": "space"}]
        levels = [
            PyramidLevel("s0", None, (1, 1), [1, 1], [0, 0], axes),
            PyramidLevel("s1", None, (2, 2), [2, 2], [0, 0], axes),
        ]
        return MultiscaleManifest("data", "plane", levels, is_c_order)

    def test_manifest_written_to_its_path(self):
        with open_container(self.root / "out.zarr") as container:
            self._manifest(is_c_order=True).write(container)
            multiscale = container.get_attributes("data")["multiscales"][0]
        self.assertEqual("plane", multiscale["name"])
        self.assertEqual(
            ["s0", "s1"], [d["path"] for d in multiscale["datasets"]]
        )

    def test_manifest_axis_order_must_match_container(self):
        with open_container(self.root / "out.n5") as container:
            with self.assertRaises(ValueError):
                self._manifest(is_c_order=True).write(container)
            self.assertNotIn("multiscales", container.get_attributes("data"))


if __name__ == "__main__":
    unittest.main()
