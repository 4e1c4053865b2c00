"""Chunked array containers (N5, Zarr, HDF5) the exporter writes into.

Dataset dimensions and block sizes are reported fastest-varying axis first,
as N5 stores them. Pixel data goes in and out row-major, so the slices passed
to ``write_block`` index the reversed dimensions.
"""
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import h5py
import hdf5plugin
import numpy as np
import zarr
from numcodecs import GZip, LZ4, Blosc, get_codec
from numcodecs.abc import Codec
from zarr.storage import contains_array

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.INFO)

PathLike = Union[str, Path]

SUPPORTED_DTYPES = (
    "uint8",
    "uint16",
    "uint32",
    "uint64",
    "int8",
    "int16",
    "int32",
    "int64",
    "float32",
    "float64",
)


class UnsupportedTypeError(Exception):
    pass


def get_data_type(dtype: Any) -> str:
    """
    Map a pixel dtype to the container data type tag.

    Raises:
        UnsupportedTypeError: if no container data type exists for it
    """
    try:
        name = np.dtype(dtype).name
    except TypeError:
        raise UnsupportedTypeError(f"unsupported pixel type {dtype}")
    if name not in SUPPORTED_DTYPES:
        raise UnsupportedTypeError(
            f"pixel type {name} has no container data type. "
            f"Supported types: {SUPPORTED_DTYPES}"
        )
    return name


class DatasetAttributes:
    """Shape, blocking, type and compression of one dataset."""

    def __init__(
        self,
        dimensions: Sequence[int],
        block_size: Sequence[int],
        data_type: str,
        compression: Optional[Codec] = None,
        is_c_order: bool = False,
    ):
        if len(dimensions) != len(block_size):
            raise ValueError(
                f"dimensions {tuple(dimensions)} and block size "
                f"{tuple(block_size)} have different lengths"
            )
        self.dimensions = tuple(int(d) for d in dimensions)
        self.block_size = tuple(int(b) for b in block_size)
        self.data_type = get_data_type(data_type)
        self.compression = compression
        # True when the container lists the slowest-varying axis first
        self.is_c_order = is_c_order

    @property
    def num_dimensions(self) -> int:
        return len(self.dimensions)

    def shape(self) -> Tuple[int, ...]:
        """Row-major array shape."""
        return tuple(reversed(self.dimensions))

    def chunks(self) -> Tuple[int, ...]:
        """Row-major chunk shape."""
        return tuple(reversed(self.block_size))

    def __eq__(self, other):
        if not isinstance(other, DatasetAttributes):
            return NotImplemented
        return (
            self.dimensions == other.dimensions
            and self.block_size == other.block_size
            and self.data_type == other.data_type
            and self.compression == other.compression
        )

    def __repr__(self):
        return (
            f"DatasetAttributes(dimensions={self.dimensions}, "
            f"block_size={self.block_size}, data_type={self.data_type}, "
            f"compression={self.compression})"
        )


class Container(ABC):
    """A hierarchical container of chunked datasets."""

    is_c_order = True

    def __init__(self, root: PathLike):
        self.root = str(root)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @abstractmethod
    def dataset_exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def create_dataset(self, path: str, attributes: DatasetAttributes):
        pass

    @abstractmethod
    def get_dataset_attributes(self, path: str) -> DatasetAttributes:
        pass

    @abstractmethod
    def write_block(self, path: str, slices: Tuple[slice, ...], data) -> None:
        pass

    @abstractmethod
    def read(self, path: str, slices: Tuple[slice, ...] = None) -> np.ndarray:
        pass

    @abstractmethod
    def grow_dataset(self, path: str, dimensions: Sequence[int]) -> None:
        """Enlarge a dataset to at least `dimensions` (never shrink)."""
        pass

    @abstractmethod
    def get_attributes(self, path: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def set_attributes(self, path: str, attributes: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


def _grown(current: Sequence[int], requested: Sequence[int]) -> Tuple:
    if len(current) != len(requested):
        raise ValueError(
            f"cannot grow a {len(current)}D dataset to {len(requested)}D"
        )
    return tuple(max(int(c), int(r)) for c, r in zip(current, requested))


class ZarrContainer(Container):
    """Zarr v2 directory store, row-major."""

    is_c_order = True

    def __init__(self, root: PathLike):
        super().__init__(root)
        self._store = self._open_store()
        self._group = zarr.group(store=self._store, overwrite=False)
        self._arrays: Dict[str, zarr.Array] = {}

    def _open_store(self):
        return zarr.DirectoryStore(self.root, dimension_separator="/")

    def _create_kwargs(self) -> dict:
        return {"dimension_separator": "/"}

    def _array(self, path: str) -> zarr.Array:
        arr = self._arrays.get(path)
        if arr is None:
            arr = self._group[path]
            self._arrays[path] = arr
        return arr

    def dataset_exists(self, path: str) -> bool:
        return contains_array(self._store, path)

    def create_dataset(self, path: str, attributes: DatasetAttributes):
        arr = self._group.create_dataset(
            path,
            shape=attributes.shape(),
            chunks=attributes.chunks(),
            dtype=attributes.data_type,
            compressor=attributes.compression,
            overwrite=True,
            **self._create_kwargs(),
        )
        self._arrays[path] = arr
        return arr

    @staticmethod
    def _unwrap_compressor(compressor) -> Optional[Codec]:
        return compressor

    def get_dataset_attributes(self, path: str) -> DatasetAttributes:
        arr = self._array(path)
        return DatasetAttributes(
            tuple(reversed(arr.shape)),
            tuple(reversed(arr.chunks)),
            arr.dtype,
            self._unwrap_compressor(arr.compressor),
            is_c_order=self.is_c_order,
        )

    def write_block(self, path: str, slices: Tuple[slice, ...], data) -> None:
        self._array(path)[slices] = data

    def read(self, path: str, slices: Tuple[slice, ...] = None) -> np.ndarray:
        arr = self._array(path)
        if slices is None:
            return arr[...]
        return arr[slices]

    def grow_dataset(self, path: str, dimensions: Sequence[int]) -> None:
        arr = self._array(path)
        shape = _grown(arr.shape, tuple(reversed(dimensions)))
        if shape != arr.shape:
            LOGGER.info(f"Growing {path} from {arr.shape} to {shape}")
            arr.resize(*shape)

    def _node(self, path: str):
        if not path:
            return self._group
        if self.dataset_exists(path):
            return self._array(path)
        return self._group.require_group(path)

    def get_attributes(self, path: str) -> Dict[str, Any]:
        return dict(self._node(path).attrs)

    def set_attributes(self, path: str, attributes: Dict[str, Any]) -> None:
        self._node(path).attrs.update(attributes)

    def close(self) -> None:
        self._arrays.clear()
        self._store.close()


class N5Container(ZarrContainer):
    """N5 container, fastest-varying axis first on disk."""

    is_c_order = False

    def _open_store(self):
        return zarr.N5FSStore(self.root)

    def _create_kwargs(self) -> dict:
        return {}

    @staticmethod
    def _unwrap_compressor(compressor) -> Optional[Codec]:
        # N5 chunks are wrapped with a header codec holding the real one
        config = getattr(compressor, "compressor_config", None)
        if config is None:
            return None
        return get_codec(config)


class HDF5Container(Container):
    """HDF5 file, row-major. Nested attribute values are stored as JSON."""

    is_c_order = True

    _PLUGIN_FILTERS = {
        hdf5plugin.LZ4_ID: LZ4,
        hdf5plugin.BLOSC_ID: Blosc,
    }

    def __init__(self, root: PathLike):
        super().__init__(root)
        parent = Path(self.root).parent
        os.makedirs(parent, exist_ok=True)
        self.handle = h5py.File(self.root, mode="a")

    @staticmethod
    def _key(path: str) -> str:
        return path or "/"

    def dataset_exists(self, path: str) -> bool:
        key = self._key(path)
        return key in self.handle and isinstance(
            self.handle[key], h5py.Dataset
        )

    @staticmethod
    def _filter_kwargs(compression: Optional[Codec]) -> dict:
        if compression is None:
            return {}
        codec_id = compression.codec_id
        if codec_id == GZip.codec_id:
            return {"compression": "gzip", "compression_opts": compression.level}
        if codec_id == LZ4.codec_id:
            return dict(hdf5plugin.LZ4())
        if codec_id == Blosc.codec_id:
            return dict(hdf5plugin.Blosc())
        LOGGER.warning(
            f"HDF5 has no filter for {codec_id} compression, writing raw"
        )
        return {}

    def create_dataset(self, path: str, attributes: DatasetAttributes):
        key = self._key(path)
        if key in self.handle:
            del self.handle[key]
        ds = self.handle.create_dataset(
            key,
            shape=attributes.shape(),
            chunks=attributes.chunks(),
            maxshape=(None,) * attributes.num_dimensions,
            dtype=attributes.data_type,
            **self._filter_kwargs(attributes.compression),
        )
        return ds

    def get_dataset_attributes(self, path: str) -> DatasetAttributes:
        ds = self.handle[self._key(path)]
        compression = None
        if ds.compression == "gzip":
            compression = GZip(level=ds.compression_opts)
        else:
            plist = ds.id.get_create_plist()
            filter_ids = {
                plist.get_filter(i)[0] for i in range(plist.get_nfilters())
            }
            for filter_id, codec in self._PLUGIN_FILTERS.items():
                if filter_id in filter_ids:
                    compression = codec()
        return DatasetAttributes(
            tuple(reversed(ds.shape)),
            tuple(reversed(ds.chunks)),
            ds.dtype,
            compression,
            is_c_order=self.is_c_order,
        )

    def write_block(self, path: str, slices: Tuple[slice, ...], data) -> None:
        self.handle[self._key(path)][slices] = data

    def read(self, path: str, slices: Tuple[slice, ...] = None) -> np.ndarray:
        ds = self.handle[self._key(path)]
        if slices is None:
            return ds[...]
        return ds[slices]

    def grow_dataset(self, path: str, dimensions: Sequence[int]) -> None:
        ds = self.handle[self._key(path)]
        shape = _grown(ds.shape, tuple(reversed(dimensions)))
        if shape != ds.shape:
            LOGGER.info(f"Growing {path} from {ds.shape} to {shape}")
            ds.resize(shape)

    def get_attributes(self, path: str) -> Dict[str, Any]:
        attrs = {}
        for k, v in self.handle[self._key(path)].attrs.items():
            if isinstance(v, str):
                try:
                    v = json.loads(v)
                except ValueError:
                    pass
            elif isinstance(v, np.ndarray):
                v = v.tolist()
            elif isinstance(v, np.generic):
                v = v.item()
            attrs[k] = v
        return attrs

    def set_attributes(self, path: str, attributes: Dict[str, Any]) -> None:
        key = self._key(path)
        if key in self.handle:
            node = self.handle[key]
        else:
            node = self.handle.require_group(key)
        for k, v in attributes.items():
            if isinstance(v, (dict, list, tuple)):
                v = json.dumps(v)
            node.attrs[k] = v

    def close(self) -> None:
        """Close the file handle to free resources"""
        if self.handle is not None:
            self.handle.close()
            self.handle = None


class ContainerFactory:
    N5_EXTENSIONS = [".n5"]
    HDF5_EXTENSIONS = [".h5", ".hdf5", ".hdf"]

    def create(self, root: PathLike) -> Container:
        """
        Open (creating if needed) the container for a root location.
        The format is chosen from the root suffix; anything that is
        neither N5 nor HDF5 is written as Zarr.

        Args:
            root: the container location

        Returns:
            the Container instance
        """
        ext = Path(str(root).rstrip("/")).suffix.lower()
        if ext in self.N5_EXTENSIONS:
            container = N5Container(root)
        elif ext in self.HDF5_EXTENSIONS:
            container = HDF5Container(root)
        else:
            container = ZarrContainer(root)
        LOGGER.info(f"Opened {container.__class__.__name__} at {root}")
        return container


def open_container(root: PathLike) -> Container:
    return ContainerFactory().create(root)
