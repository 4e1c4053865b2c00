"""Module that maps a compression name to a numcodecs Codec.
"""
import logging
from enum import Enum
from typing import Optional

from numcodecs import GZip, LZ4, LZMA, Blosc
from numcodecs.abc import Codec

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.INFO)


class ImagingCompressors:
    class Compressors(Enum):
        """Enum for compression algorithms a user can select"""

        raw = "raw"
        gzip = GZip.codec_id
        lz4 = LZ4.codec_id
        xz = "xz"
        blosc = Blosc.codec_id

    compressors = [member.name for member in Compressors]

    _CODECS = {
        Compressors.gzip: GZip,
        Compressors.lz4: LZ4,
        Compressors.xz: LZMA,
        Compressors.blosc: Blosc,
    }

    @staticmethod
    def get_compressor(
        compressor_name: Optional[str], **kwargs
    ) -> Optional[Codec]:
        """
        Retrieve a compressor for a given name and optional kwargs.
        Unknown or empty names select raw (uncompressed) storage.
        Args:
            compressor_name (str): Matches one of the names Compressors enum
            **kwargs (dict): Options to pass into the Compressor
        Returns:
            An instantiated compressor class, or None for raw.
        """
        name = (compressor_name or "").strip().lower()
        try:
            compressor = ImagingCompressors.Compressors[name]
        except KeyError:
            if name:
                LOGGER.warning(
                    f"Unknown compressor '{compressor_name}', writing raw. "
                    f"Known compressors: {ImagingCompressors.compressors}"
                )
            return None
        if compressor == ImagingCompressors.Compressors.raw:
            return None
        return ImagingCompressors._CODECS[compressor](**kwargs)
