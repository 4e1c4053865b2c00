import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

import dask.array as da
import numpy as np
from parameterized import parameterized

from n5_exporter.writers.chunk_writer import (
    ChunkWriteError,
    ConcurrentChunkWriter,
    WriteProgress,
)
from n5_exporter.writers.containers import DatasetAttributes, open_container


class RecordingSink:
    def __init__(self):
        self.values = []

    def __call__(self, fraction):
        self.values.append(fraction)


def _mock_container(dimensions=(64, 64, 4), block_size=(32, 32, 1)):
    container = MagicMock()
    container.get_dataset_attributes.return_value = DatasetAttributes(
        dimensions, block_size, "uint16"
    )
    return container


class TestConcurrentChunkWriter(unittest.TestCase):
    """Tests methods defined in ConcurrentChunkWriter class"""

    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self._temp_dir.name)

    def tearDown(self):
        self._temp_dir.cleanup()

    def test_progress_is_monotone_and_ends_at_one(self):
        container = _mock_container()
        sink = RecordingSink()
        writer = ConcurrentChunkWriter(
            n_threads=1, progress_sink=sink, poll_interval=0.001
        )
        data = np.zeros((4, 64, 64), dtype=np.uint16)
        n = writer.write(container, "d", data)
        self.assertEqual(16, n)
        self.assertEqual(16, container.write_block.call_count)
        self.assertTrue(len(sink.values) >= 1)
        self.assertEqual(1.0, sink.values[-1])
        self.assertEqual(sorted(sink.values), sink.values)
        self.assertTrue(all(0.0 <= v <= 1.0 for v in sink.values))

    @parameterized.expand([(0,), (257,), (-1,)])
    def test_thread_budget(self, n_threads):
        with self.assertRaises(ValueError):
            ConcurrentChunkWriter(n_threads=n_threads)

    def test_chunk_failure(self):
        container = _mock_container()
        container.write_block.side_effect = OSError("disk full")
        sink = RecordingSink()
        writer = ConcurrentChunkWriter(
            n_threads=2, progress_sink=sink, poll_interval=0.001
        )
        with self.assertRaises(ChunkWriteError):
            writer.write(
                container, "d", np.zeros((4, 64, 64), dtype=np.uint16)
            )
        self.assertEqual(1.0, sink.values[-1])

    @parameterized.expand([(1,), (4,), (256,)])
    def test_write_to_zarr(self, n_threads):
        data = da.from_array(
            np.random.randint(0, 255, size=(4, 64, 64), dtype=np.uint16),
            chunks=(2, 17, 64),
        )
        with open_container(self.root / "out.zarr") as container:
            container.create_dataset(
                "d", DatasetAttributes((64, 64, 4), (32, 32, 1), "uint16")
            )
            writer = ConcurrentChunkWriter(
                n_threads=n_threads, progress_sink=RecordingSink()
            )
            self.assertEqual(16, writer.write(container, "d", data))
            np.testing.assert_array_equal(
                data.compute(), container.read("d")
            )

    def test_write_at_offset(self):
        data = np.ones((3, 5), dtype=np.uint8)
        with open_container(self.root / "out.n5") as container:
            container.create_dataset(
                "d", DatasetAttributes((16, 8), (4, 4), "uint8")
            )
            writer = ConcurrentChunkWriter(progress_sink=RecordingSink())
            # offset is x, y
            writer.write(container, "d", data, offset=(6, 2))
            actual = container.read("d")
            np.testing.assert_array_equal(data, actual[2:5, 6:11])
            self.assertEqual(data.sum(), actual.sum())

    def test_default_sink_is_tqdm(self):
        container = _mock_container((8, 8), (4, 4))
        writer = ConcurrentChunkWriter(poll_interval=0.001)
        self.assertEqual(
            4, writer.write(container, "d", np.zeros((8, 8), np.uint16))
        )


class TestWriteProgress(unittest.TestCase):
    def test_fraction(self):
        progress = WriteProgress(4)
        self.assertEqual(0.0, progress.fraction)
        progress.increment()
        self.assertEqual(0.25, progress.fraction)
        self.assertFalse(progress.done)
        for _ in range(3):
            progress.increment()
        self.assertTrue(progress.done)
        self.assertEqual(1.0, WriteProgress(0).fraction)


if __name__ == "__main__":
    unittest.main()
