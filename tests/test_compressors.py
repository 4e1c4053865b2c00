import unittest

from numcodecs import GZip, LZ4, LZMA, Blosc
from parameterized import parameterized

from n5_exporter.transformations.compressors import ImagingCompressors


class TestImagingCompressors(unittest.TestCase):
    def test_get_compressor(self):
        gzip = ImagingCompressors.get_compressor("gzip", level=5)
        self.assertEqual(GZip(level=5), gzip)
        blosc = ImagingCompressors.get_compressor(
            "blosc", cname="zstd", clevel=1, shuffle=Blosc.SHUFFLE
        )
        self.assertEqual(
            Blosc(cname="zstd", clevel=1, shuffle=Blosc.SHUFFLE), blosc
        )

    @parameterized.expand(
        [("gzip", GZip), ("GZIP", GZip), ("lz4", LZ4), ("xz", LZMA),
         ("blosc", Blosc)]
    )
    def test_known_names(self, name, codec_cls):
        self.assertIsInstance(
            ImagingCompressors.get_compressor(name), codec_cls
        )

    @parameterized.expand(
        [("raw",), ("",), (None,), ("zstd",), ("bogus",)]
    )
    def test_unknown_names_are_raw(self, name):
        self.assertIsNone(ImagingCompressors.get_compressor(name))

    def test_unknown_name_warns(self):
        with self.assertLogs(
            "n5_exporter.transformations.compressors", level="WARNING"
        ):
            ImagingCompressors.get_compressor("bogus")


if __name__ == "__main__":
    unittest.main()
