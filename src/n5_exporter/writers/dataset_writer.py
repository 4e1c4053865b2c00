"""Overwrite and subset policies applied to each dataset write.
"""
import logging
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple, Union

import dask.array as da
import numpy as np
from numcodecs.abc import Codec

from n5_exporter.writers.chunk_writer import ConcurrentChunkWriter
from n5_exporter.writers.containers import (
    Container,
    DatasetAttributes,
    get_data_type,
)

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.INFO)

ArrayLike = Union[np.ndarray, da.Array]


class OverwriteOption(Enum):
    NO_OVERWRITE = "No overwrite"
    OVERWRITE = "Overwrite"
    WRITE_SUBSET = "Overwrite subset"


def _natural_dimensions(data: ArrayLike) -> Tuple[int, ...]:
    return tuple(int(s) for s in reversed(data.shape))


class DatasetWriter:
    """
    Writes whole arrays into container datasets under one overwrite policy.

    Block sizes and offsets are given fastest-varying axis first, pixel
    arrays row-major.
    """

    def __init__(
        self,
        container: Container,
        chunk_writer: ConcurrentChunkWriter,
        overwrite: OverwriteOption = OverwriteOption.NO_OVERWRITE,
    ):
        self.container = container
        self.chunk_writer = chunk_writer
        self.overwrite = OverwriteOption(overwrite)

    def _refuses(self, path: str) -> bool:
        if (
            self.overwrite == OverwriteOption.NO_OVERWRITE
            and self.container.dataset_exists(path)
        ):
            LOGGER.info(f"Dataset ({path}) already exists, not writing.")
            return True
        return False

    def write(
        self,
        data: ArrayLike,
        path: str,
        block_size: Sequence[int],
        compression: Optional[Codec] = None,
    ) -> bool:
        """
        Create (or recreate) a dataset sized to `data` and write all of it.

        Args:
            data: row-major pixel data
            path: the dataset path
            block_size: the block size, fastest-varying axis first
            compression: the codec, None for raw

        Returns:
            False if the dataset exists and the policy refuses to overwrite
        """
        if self._refuses(path):
            return False
        attributes = DatasetAttributes(
            _natural_dimensions(data),
            block_size,
            data.dtype,
            compression,
            is_c_order=self.container.is_c_order,
        )
        self.container.create_dataset(path, attributes)
        self.chunk_writer.write(self.container, path, data)
        return True

    def write_subset(
        self,
        data: ArrayLike,
        path: str,
        block_size: Sequence[int],
        compression: Optional[Codec],
        offset: Sequence[int],
        on_create: Optional[Callable[[str], None]] = None,
    ) -> bool:
        """
        Merge `data` into a dataset at a pixel offset.

        A missing dataset is first created as an all-ones placeholder with
        the given block size, and `on_create` is called with its path so
        metadata can be attached. The dataset then grows to cover
        ``offset + shape`` and only that region is written.

        Args:
            data: row-major pixel data
            path: the dataset path
            block_size: the block size, fastest-varying axis first
            compression: the codec, None for raw
            offset: where `data` starts, fastest-varying axis first
            on_create: called after a placeholder is created

        Returns:
            True once the region is written

        Raises:
            UnsupportedTypeError: if the pixel type has no container type,
                before anything is created
        """
        data_type = get_data_type(data.dtype)
        dimensions = _natural_dimensions(data)
        if len(offset) != len(dimensions):
            raise ValueError(
                f"offset {tuple(offset)} does not match "
                f"{len(dimensions)}D data"
            )

        if not self.container.dataset_exists(path):
            LOGGER.info(f"Creating placeholder dataset {path}")
            placeholder = DatasetAttributes(
                (1,) * len(dimensions),
                block_size,
                data_type,
                compression,
                is_c_order=self.container.is_c_order,
            )
            self.container.create_dataset(path, placeholder)
            if on_create is not None:
                on_create(path)

        self.container.grow_dataset(
            path, [o + d for o, d in zip(offset, dimensions)]
        )
        self.chunk_writer.write(self.container, path, data, offset=offset)
        return True
