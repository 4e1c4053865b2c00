import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from numcodecs.abc import Codec
from ome_zarr.format import FormatV04

from n5_exporter import __version__
from n5_exporter.readers.image_readers import AxisType, ImageSource
from n5_exporter.transformations.channels import join_path
from n5_exporter.transformations.metadata import (
    OmeNgffMetadata,
    compute_coordinate_transformations,
)
from n5_exporter.writers.containers import Container, DatasetAttributes
from n5_exporter.writers.dataset_writer import DatasetWriter

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.INFO)

DOWNSAMPLING_FACTOR = 2


def reverse_if_c_order(attributes: DatasetAttributes, values: Sequence):
    """
    Express a natural-order (fastest-varying first) vector in the
    container's axis order.
    """
    if attributes.is_c_order:
        return list(reversed(values))
    return list(values)


def update_downsampling_factors(
    factors: Sequence[int],
    dimensions: Sequence[int],
    axis_types: Sequence[AxisType],
    factor: int = DOWNSAMPLING_FACTOR,
) -> Tuple[int, ...]:
    """
    Advance cumulative downsampling factors by one pyramid level.

    Only space axes are downsampled, and an axis stops once another step
    would leave it with fewer than two samples.

    Args:
        factors: the previous level's cumulative factors
        dimensions: the full resolution extents
        axis_types: the type of each axis
        factor: the per-level downsampling factor
    Returns:
        the new cumulative factors
    """
    updated = []
    for f, dim, axis_type in zip(factors, dimensions, axis_types):
        if axis_type == AxisType.SPACE and f * factor < dim:
            updated.append(f * factor)
        else:
            updated.append(f)
    return tuple(updated)


class PyramidLevel:
    """One resolution level of a multiscale pyramid."""

    def __init__(
        self,
        path: str,
        attributes: DatasetAttributes,
        factors: Sequence[int],
        scale: Sequence[float],
        translation: Sequence[float],
        axes: List[Dict[str, str]],
    ):
        """
        Args:
            path: the level path relative to the multiscale group
            attributes: the committed dataset attributes
            factors: cumulative downsampling factors, natural order
            scale: the level scale, container order
            translation: the level translation, container order
            axes: the axis descriptors, container order
        """
        self.path = path
        self.attributes = attributes
        self.factors = tuple(factors)
        self.scale = list(scale)
        self.translation = list(translation)
        self.axes = axes

    @property
    def coordinate_transformations(self) -> List[Dict[str, Any]]:
        return compute_coordinate_transformations(
            self.scale, self.translation
        )

    def to_dataset(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "coordinateTransformations": self.coordinate_transformations,
        }


class MultiscaleManifest:
    """The top-level ``multiscales`` description of a pyramid."""

    def __init__(
        self,
        path: str,
        name: str,
        levels: List[PyramidLevel],
        is_c_order: bool,
    ):
        """
        Args:
            path: the multiscale group path in the container
            name: the image name
            levels: the written levels, full resolution first
            is_c_order: whether level vectors are listed slowest axis first
        """
        self.path = path
        self.name = name
        self.levels = levels
        self.is_c_order = is_c_order

    def validate(self) -> None:
        if not self.levels:
            raise ValueError("a multiscale pyramid needs at least one level")
        FormatV04().validate_coordinate_transformations(
            len(self.levels[0].axes),
            len(self.levels),
            [level.coordinate_transformations for level in self.levels],
        )

    def to_attributes(self) -> Dict[str, Any]:
        fmt = FormatV04()
        multiscale = {
            "version": fmt.version,
            "name": self.name,
            "axes": self.levels[0].axes,
            "datasets": [level.to_dataset() for level in self.levels],
            "type": "sampling",
            "metadata": {
                "description": "Pyramid generated by subsampling",
                "method": f"{__name__}.write_multiscale_pyramid",
                "version": __version__,
                "kwargs": {"factor": DOWNSAMPLING_FACTOR},
            },
        }
        return {"multiscales": [multiscale]}

    def write(self, container: Container) -> None:
        """
        Validate the manifest and store it at ``path``.

        Raises:
            ValueError: if the levels are invalid or were laid out for a
                container with the other axis order
        """
        if container.is_c_order != self.is_c_order:
            raise ValueError(
                f"manifest for {self.path} lists axes in "
                f"{'C' if self.is_c_order else 'F'} order but the container "
                f"stores {'C' if container.is_c_order else 'F'} order"
            )
        self.validate()
        LOGGER.info(
            f"Writing multiscale metadata for {len(self.levels)} levels "
            f"to {self.path or '/'}"
        )
        container.set_attributes(self.path, self.to_attributes())


def _write_level_metadata(
    dialect: OmeNgffMetadata,
    container: Container,
    dataset: str,
    level: PyramidLevel,
) -> None:
    try:
        dialect.write(
            {
                "coordinateTransformations": level.coordinate_transformations,
            },
            container,
            dataset,
        )
    except Exception:
        LOGGER.exception(f"Failed to write level metadata to {dataset}")


def write_multiscale_pyramid(
    image: ImageSource,
    container: Container,
    dataset: str,
    block_size: Tuple[int, ...],
    compression: Optional[Codec],
    num_scales: int,
    dataset_writer: DatasetWriter,
    dialect: Optional[OmeNgffMetadata] = None,
) -> List[PyramidLevel]:
    """
    Write an image as an OME-NGFF multiscale pyramid.

    Level i is stored at ``{dataset}/s{i}`` and is level 0 subsampled by
    cumulative factors of 2 along the space axes. Scale vectors grow with
    the factors while the translation of level 0 is kept for every level.
    The manifest is written to ``dataset`` once all levels are stored.

    Parameters
    ----------
    image : ImageSource
        The image to export.
    container : Container
        The open output container.
    dataset : str
        The multiscale group path.
    block_size : tuple of int
        Block size, fastest-varying axis first.
    compression : numcodecs.abc.Codec, optional
        The codec for every level, None for raw.
    num_scales : int
        The number of pyramid levels.
    dataset_writer : DatasetWriter
        Applies the overwrite policy and writes chunks.
    dialect : OmeNgffMetadata, optional
        Reads the base metadata and writes per-level metadata.

    Returns
    -------
    list of PyramidLevel
        The levels, full resolution first.
    """
    if num_scales < 1:
        raise ValueError(f"num_scales must be >= 1, got {num_scales}")
    if dialect is None:
        dialect = OmeNgffMetadata()

    base = dialect.read(image)
    dimensions = image.get_dimensions()
    axis_types = image.axis_types
    full_res = image.as_dask_array()

    levels = []
    factors = (1,) * image.ndim
    s0_attributes = None
    for i in range(num_scales):
        if i > 0:
            factors = update_downsampling_factors(
                factors, dimensions, axis_types
            )
            data = image.subsampled_view(factors)
        else:
            data = full_res
        relative_path = f"s{i}"
        level_path = join_path(dataset, relative_path)
        LOGGER.info(
            f"Writing level {i} to {level_path}, factors {factors}, "
            f"shape {data.shape}"
        )
        dataset_writer.write(data, level_path, block_size, compression)

        attributes = container.get_dataset_attributes(level_path)
        if s0_attributes is None:
            # the container may adjust what it was asked for
            s0_attributes = attributes
            LOGGER.info(
                f"Container axis order is "
                f"{'C' if s0_attributes.is_c_order else 'F'}"
            )

        scale = [s * f for s, f in zip(base["scale"], factors)]
        level = PyramidLevel(
            relative_path,
            attributes,
            factors,
            reverse_if_c_order(s0_attributes, scale),
            reverse_if_c_order(s0_attributes, base["translation"]),
            reverse_if_c_order(s0_attributes, base["axes"]),
        )
        _write_level_metadata(dialect, container, level_path, level)
        levels.append(level)

    manifest = MultiscaleManifest(
        dataset, image.title, levels, s0_attributes.is_c_order
    )
    try:
        manifest.write(container)
    except Exception:
        LOGGER.exception(f"Failed to write multiscale metadata to {dataset}")

    return levels
