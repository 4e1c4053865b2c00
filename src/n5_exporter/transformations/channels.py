import logging
from typing import List, Tuple

import dask.array as da

from n5_exporter.readers.image_readers import ImageSource
from n5_exporter.transformations.metadata import MetadataStyle
from n5_exporter.util.chunk_utils import insert_block_size, slice_block_size

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.INFO)


def join_path(base: str, *parts: str) -> str:
    """Join dataset path components, ignoring empty ones."""
    components = [base.strip("/")] + [p.strip("/") for p in parts]
    return "/".join(c for c in components if c)


class ChannelView:
    """The data, dataset path and block size of one exported channel."""

    def __init__(
        self,
        channel: int,
        path: str,
        data: da.Array,
        block_size: Tuple[int, ...],
    ):
        self.channel = channel
        self.path = path
        self.data = data
        self.block_size = tuple(block_size)

    def __repr__(self):
        return (
            f"ChannelView(channel={self.channel}, path={self.path!r}, "
            f"shape={self.data.shape}, block_size={self.block_size})"
        )


class ChannelSplitter:
    """
    Splits an image into one dataset per channel, named for the metadata
    style in use.
    """

    # natural-order position of z in an x, y, z, t view
    Z_AXIS = 2

    def __init__(self, style: MetadataStyle):
        self.style = MetadataStyle(style)

    def dataset_path(self, base: str, channel: int, n_channels: int) -> str:
        """
        Args:
            base: the configured dataset path
            channel: the channel index
            n_channels: the number of channels in the image
        Returns:
            ``{base}/c{channel}/s0`` for N5 Viewer, ``{base}/c{channel}``
            for other styles with several channels, otherwise ``base``
        """
        if self.style == MetadataStyle.N5_VIEWER:
            return join_path(base, f"c{channel}", "s0")
        if n_channels > 1:
            return join_path(base, f"c{channel}")
        return base

    def _promote_time_to_4d(
        self, data: da.Array, block_size: Tuple[int, ...]
    ) -> Tuple[da.Array, Tuple[int, ...]]:
        # N5 Viewer reads the third axis as depth, so x, y, t becomes
        # x, y, z, t with a single slice
        data = da.expand_dims(data, axis=data.ndim - self.Z_AXIS)
        block_size = insert_block_size(block_size, self.Z_AXIS, 1)
        return data, block_size

    def split(
        self,
        image: ImageSource,
        base: str,
        block_size: Tuple[int, ...],
    ) -> List[ChannelView]:
        """
        Derive the per-channel views of an image.

        Args:
            image: the image to split
            base: the configured dataset path
            block_size: the full block size, fastest-varying axis first

        Returns:
            one ChannelView per channel
        """
        n_channels = image.n_channels
        if n_channels > 1:
            channel_block_size = slice_block_size(
                block_size, image.channel_axis
            )
        else:
            channel_block_size = tuple(block_size)

        promote = (
            self.style == MetadataStyle.N5_VIEWER
            and image.n_frames > 1
            and image.n_slices == 1
        )

        views = []
        for c in range(n_channels):
            data = image.channel_view(c)
            channel_block = channel_block_size
            if promote:
                data, channel_block = self._promote_time_to_4d(
                    data, channel_block
                )
            views.append(
                ChannelView(
                    c,
                    self.dataset_path(base, c, n_channels),
                    data,
                    channel_block,
                )
            )
        LOGGER.debug(f"Split {image} into {views}")
        return views
