"""Module to define and potentially run an export of an image to a
chunked container."""

import logging
import os
import sys
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from numcodecs.abc import Codec

from n5_exporter.config_loader.export_config import ExportJobConfigs
from n5_exporter.readers.image_readers import (
    ImageSource,
    offset_from_calibration,
    read_tiff,
)
from n5_exporter.transformations.channels import ChannelSplitter, join_path
from n5_exporter.transformations.compressors import ImagingCompressors
from n5_exporter.transformations.metadata import (
    MetadataDialect,
    MetadataStyle,
    MetadataTemplateMapper,
    get_dialect,
    write_metadata,
)
from n5_exporter.transformations.ome_zarr import write_multiscale_pyramid
from n5_exporter.util.chunk_utils import parse_block_size, parse_offset
from n5_exporter.util.setup_logging import setup_logging
from n5_exporter.writers.chunk_writer import (
    ConcurrentChunkWriter,
    ProgressSink,
)
from n5_exporter.writers.containers import Container, open_container
from n5_exporter.writers.dataset_writer import DatasetWriter, OverwriteOption

Mapper = Callable[[Dict[str, Any]], Dict[str, Any]]

# styles written as one dataset, without splitting channels
SINGLE_DATASET_STYLES = (
    MetadataStyle.NONE,
    MetadataStyle.IMAGEJ,
    MetadataStyle.CUSTOM,
)


class N5Exporter:
    """Exports an image to an N5, Zarr or HDF5 container."""

    def __init__(
        self,
        job_configs: ExportJobConfigs,
        mapper: Optional[Mapper] = None,
        progress_sink: Optional[ProgressSink] = None,
    ):
        """
        Args:
            job_configs: the export settings
            mapper: template mapper for the Custom style. Loaded from
                job_configs.metadata_template when not given.
            progress_sink: receives write progress fractions. Defaults to
                a tqdm bar per dataset.
        """
        self.job_configs = job_configs
        self._instance_logger = (
            logging.getLogger(__name__)
            .getChild(self.__class__.__name__)
            .getChild(str(id(self)))
        )
        self._instance_logger.setLevel(job_configs.log_level)
        if mapper is None and job_configs.metadata_template is not None:
            mapper = MetadataTemplateMapper.from_json(
                job_configs.metadata_template
            )
        self.mapper = mapper
        self.progress_sink = progress_sink

    def _resolve_write_options(
        self, image: ImageSource
    ) -> Tuple[Tuple[int, ...], Optional[Codec], Optional[Tuple[int, ...]]]:
        """Parse block size, compression and subset offset.

        Raises:
            ConfigError: on malformed block size or offset
        """
        block_size = parse_block_size(
            self.job_configs.block_size, image.get_dimensions()
        )
        compression = ImagingCompressors.get_compressor(
            self.job_configs.compression,
            **self.job_configs.compression_kwargs,
        )
        offset = None
        if self.job_configs.overwrite == OverwriteOption.WRITE_SUBSET:
            if self.job_configs.subset_offset:
                offset = parse_offset(
                    self.job_configs.subset_offset, image.ndim
                )
            else:
                offset = offset_from_calibration(image)
        return block_size, compression, offset

    def _dataset_writer(
        self, container: Container, allow_subset: bool
    ) -> DatasetWriter:
        overwrite = self.job_configs.overwrite
        if overwrite == OverwriteOption.WRITE_SUBSET and not allow_subset:
            self._instance_logger.warning(
                f"{overwrite.value} is only supported for single dataset "
                f"exports, overwriting {self.job_configs.metadata_style.value} "
                f"datasets instead"
            )
            overwrite = OverwriteOption.OVERWRITE
        chunk_writer = ConcurrentChunkWriter(
            n_threads=self.job_configs.n_threads,
            progress_sink=self.progress_sink,
            display_progress_bar=self.job_configs.display_progress_bar,
        )
        return DatasetWriter(container, chunk_writer, overwrite)

    def _write_pyramid(
        self,
        image: ImageSource,
        container: Container,
        block_size: Tuple[int, ...],
        compression: Optional[Codec],
        dialect: MetadataDialect,
    ) -> List[str]:
        dataset = self.job_configs.n5_dataset
        levels = write_multiscale_pyramid(
            image,
            container,
            dataset,
            block_size,
            compression,
            self.job_configs.num_scales,
            self._dataset_writer(container, allow_subset=False),
            dialect,
        )
        return [join_path(dataset, level.path) for level in levels]

    def _write_single(
        self,
        image: ImageSource,
        container: Container,
        block_size: Tuple[int, ...],
        compression: Optional[Codec],
        offset: Optional[Tuple[int, ...]],
        dialect: Optional[MetadataDialect],
    ) -> List[str]:
        path = self.job_configs.n5_dataset
        writer = self._dataset_writer(container, allow_subset=True)
        data = image.as_dask_array()
        if offset is not None:
            self._instance_logger.info(
                f"Writing subset of {path} at offset {offset}"
            )
            writer.write_subset(
                data,
                path,
                block_size,
                compression,
                offset,
                on_create=lambda p: write_metadata(
                    container, p, dialect, image
                ),
            )
            return [path]
        if not writer.write(data, path, block_size, compression):
            return []
        write_metadata(container, path, dialect, image)
        return [path]

    def _write_channels(
        self,
        image: ImageSource,
        container: Container,
        block_size: Tuple[int, ...],
        compression: Optional[Codec],
        dialect: Optional[MetadataDialect],
    ) -> List[str]:
        writer = self._dataset_writer(container, allow_subset=False)
        splitter = ChannelSplitter(self.job_configs.metadata_style)
        written = []
        for view in splitter.split(
            image, self.job_configs.n5_dataset, block_size
        ):
            try:
                if not writer.write(
                    view.data, view.path, view.block_size, compression
                ):
                    continue
            except Exception:
                self._instance_logger.exception(
                    f"Failed to write channel {view.channel} to {view.path}"
                )
                continue
            write_metadata(container, view.path, dialect, image)
            written.append(view.path)
        return written

    def export(self, image: ImageSource) -> List[str]:
        """
        Export an image with the configured settings.

        The container is opened once and closed once, whatever happens to
        the individual datasets.

        Args:
            image: the image to export

        Returns:
            the paths of the datasets written
        """
        style = self.job_configs.metadata_style
        block_size, compression, offset = self._resolve_write_options(image)
        dialect = get_dialect(style, self.mapper)
        self._instance_logger.info(
            f"Exporting {image} to {self.job_configs.n5_root} "
            f"({style.value}, block size {block_size}, "
            f"compression {compression})"
        )

        container = open_container(self.job_configs.n5_root)
        try:
            if style == MetadataStyle.OME_NGFF:
                return self._write_pyramid(
                    image, container, block_size, compression, dialect
                )
            if style in SINGLE_DATASET_STYLES:
                return self._write_single(
                    image, container, block_size, compression, offset, dialect
                )
            return self._write_channels(
                image, container, block_size, compression, dialect
            )
        finally:
            container.close()

    def run_job(self) -> List[str]:
        """Read the configured TIFF and export it."""
        if self.job_configs.image_path is None:
            raise ValueError("image_path is required to run an export job")
        job_start_time = time.time()
        image = read_tiff(self.job_configs.image_path)
        written = self.export(image)
        self._instance_logger.info(
            f"Wrote {len(written)} dataset(s) in "
            f"{time.time() - job_start_time:.2f} seconds"
        )
        return written


if __name__ == "__main__":
    sys_args = sys.argv[1:]
    # First check if json args are set as an environment variable
    if os.getenv("N5_EXPORT_JSON_ARGS") is not None and len(sys_args) == 0:
        env_args = ["--json-args", os.getenv("N5_EXPORT_JSON_ARGS")]
        job_configs_from_main = ExportJobConfigs.from_json_args(env_args)
    elif "--json-args" in sys_args:
        job_configs_from_main = ExportJobConfigs.from_json_args(sys_args)
    else:
        job_configs_from_main = ExportJobConfigs.from_args(sys_args)
    setup_logging(job_configs_from_main.log_level)
    job = N5Exporter(job_configs=job_configs_from_main)
    job.run_job()
