from typing import Generator, Sequence, Tuple

import math


class ConfigError(Exception):
    """Exception raised for malformed block size or offset arguments."""

    def __init__(self, message: str):
        """Constructs the error message."""
        self.message = message

    def __str__(self):
        """Returns the error message."""
        return repr(self.message)


class DimensionsError(Exception):
    pass


def _parse_int_list(arg: str, name: str) -> Tuple[int, ...]:
    if arg is None or not str(arg).strip():
        raise ConfigError(f"{name} must be a comma-delimited list of integers")
    values = []
    for token in str(arg).split(","):
        try:
            values.append(int(token.strip()))
        except ValueError:
            raise ConfigError(f"could not parse {name} token '{token}'")
    return tuple(values)


def parse_block_size(
    block_size_arg: str, dimensions: Sequence[int]
) -> Tuple[int, ...]:
    """
    Resolve a full-dimensionality block size from a partial,
    comma-delimited list.

    Values are copied positionally. Remaining axes repeat the last supplied
    value, clamped to the extent of that axis.
    Args:
        block_size_arg: e.g. "64,64,8"
        dimensions: the image extents, fastest-varying axis first
    Returns:
        the block size, one entry per dimension
    Raises:
        ConfigError: if a token is not an integer or is < 1
    """
    supplied = _parse_int_list(block_size_arg, "block size")
    if any(b < 1 for b in supplied):
        raise ConfigError(f"block size must be >= 1, got {supplied}")

    nd = len(dimensions)
    block_size = list(supplied[:nd])
    last = supplied[-1]
    for i in range(len(block_size), nd):
        block_size.append(min(last, dimensions[i]))

    return tuple(block_size)


def parse_offset(offset_arg: str, n_dims: int) -> Tuple[int, ...]:
    """
    Parse a comma-delimited pixel offset.
    Args:
        offset_arg: e.g. "0,128,4"
        n_dims: the number of image dimensions
    Returns:
        the offset, fastest-varying axis first
    Raises:
        ConfigError: if a token is malformed, negative, or the offset
            length does not match the image dimensionality
    """
    offset = _parse_int_list(offset_arg, "subset offset")
    if len(offset) != n_dims:
        raise ConfigError(
            f"subset offset has {len(offset)} entries, expected {n_dims}"
        )
    if any(o < 0 for o in offset):
        raise ConfigError(f"subset offset must be >= 0, got {offset}")
    return offset


def slice_block_size(
    block_size: Sequence[int], exclude: int
) -> Tuple[int, ...]:
    """Drop the block size entry of an axis removed by a hyperslice."""
    if not 0 <= exclude < len(block_size):
        raise DimensionsError(
            f"cannot remove axis {exclude} from block size {block_size}"
        )
    return tuple(b for i, b in enumerate(block_size) if i != exclude)


def insert_block_size(
    block_size: Sequence[int], index: int, value: int = 1
) -> Tuple[int, ...]:
    """Insert a block size entry for an axis added to a view."""
    block_size = list(block_size)
    block_size.insert(index, value)
    return tuple(block_size)


def gen_chunk_slices(
    region_shape: Tuple[int, ...],
    block_shape: Tuple[int, ...],
    offset: Tuple[int, ...] = None,
) -> Generator:
    """
    Generate the chunk-aligned pieces of a region written at an offset.

    The grid is aligned to the dataset's blocks (not the region start), so
    every yielded piece lies within exactly one block of the dataset and no
    two pieces share a block.

    Parameters
    ----------
    region_shape : tuple of int
        The shape of the data being written.
    block_shape : tuple of int
        The dataset's block shape. Must have the same length as
        `region_shape`.
    offset : tuple of int, optional
        Where the region starts in the dataset. Defaults to the origin.

    Returns
    -------
    generator of (tuple of slice, tuple of slice)
        Pairs of (dataset slices, region slices).
    """
    if len(region_shape) != len(block_shape):
        raise DimensionsError(
            "region shape and block shape have different lengths"
        )
    if offset is None:
        offset = (0,) * len(region_shape)
    if len(offset) != len(region_shape):
        raise DimensionsError(
            "region shape and offset have different lengths"
        )

    def _slice_along_dim(dim: int) -> Generator:
        if dim >= len(region_shape):
            yield (), ()
        else:
            start = offset[dim]
            stop = start + region_shape[dim]
            block = block_shape[dim]
            for i in range((start // block) * block, stop, block):
                lo = max(i, start)
                hi = min(i + block, stop)
                for dst, src in _slice_along_dim(dim + 1):
                    yield (
                        (slice(lo, hi),) + dst,
                        (slice(lo - start, hi - start),) + src,
                    )

    return _slice_along_dim(0)


def count_chunks(
    region_shape: Tuple[int, ...],
    block_shape: Tuple[int, ...],
    offset: Tuple[int, ...] = None,
) -> int:
    """Return the number of pieces gen_chunk_slices yields."""
    if offset is None:
        offset = (0,) * len(region_shape)
    n = 1
    for start, size, block in zip(offset, region_shape, block_shape):
        if size <= 0:
            return 0
        first = start // block
        last = int(math.ceil((start + size) / block))
        n *= last - first
    return n
