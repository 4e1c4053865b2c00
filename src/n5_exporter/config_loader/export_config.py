"""Configuration of an export job."""

import argparse
import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Type, Union

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from n5_exporter.transformations.metadata import MetadataStyle
from n5_exporter.writers.chunk_writer import MAX_THREADS, MIN_THREADS
from n5_exporter.writers.dataset_writer import OverwriteOption


def _parse_enum(enum_cls: Type[Enum], value: Any):
    """Accept an enum member, its value, or its name in any case."""
    if isinstance(value, enum_cls) or not isinstance(value, str):
        return value
    for member in enum_cls:
        if value == member.value:
            return member
    key = value.strip().upper().replace("-", "_").replace(" ", "_")
    if key in enum_cls.__members__:
        return enum_cls[key]
    return value


class ExportJobConfigs(BaseSettings):
    """Settings that define one export of an image to a container."""

    model_config = SettingsConfigDict(env_prefix="N5_EXPORT_")

    image_path: Optional[Path] = Field(
        None,
        description=(
            "TIFF image to export. Only needed when running from the "
            "command line."
        ),
        title="Image Path",
    )
    n5_root: str = Field(
        ...,
        description=(
            "Root of the output container. The format follows the suffix: "
            ".n5 for N5, .h5/.hdf5 for HDF5, anything else for Zarr."
        ),
        title="Container Root",
    )
    n5_dataset: str = Field(
        "data",
        description="Dataset path inside the container. Default is data.",
        title="Dataset",
    )
    block_size: str = Field(
        "64,64,64",
        description=(
            "Comma-delimited block size, fastest-varying axis first. Axes "
            "left out repeat the last value, clamped to the image extent. "
            "Default is 64,64,64."
        ),
        title="Block Size",
    )
    compression: str = Field(
        "gzip",
        description=(
            "Compression: raw, gzip, lz4, xz or blosc. Unknown names write "
            "raw. Default is gzip."
        ),
        title="Compression",
    )
    compression_kwargs: Dict[str, Any] = Field(
        {},
        description="Options passed to the compressor. Default is {}.",
        title="Compression Options",
    )
    metadata_style: MetadataStyle = Field(
        MetadataStyle.OME_NGFF,
        description=(
            "Metadata written with the pixels: OME-NGFF, N5 Viewer, COSEM, "
            "ImageJ, Custom or None. Default is OME-NGFF."
        ),
        title="Metadata Style",
    )
    metadata_template: Optional[Path] = Field(
        None,
        description=(
            "JSON template used by the Custom metadata style. Values of the "
            'form "$key" are replaced by ImageJ attributes. Default is None.'
        ),
        title="Metadata Template",
    )
    n_threads: int = Field(
        1,
        ge=MIN_THREADS,
        le=MAX_THREADS,
        description=(
            f"Number of threads writing chunks, {MIN_THREADS} to "
            f"{MAX_THREADS}. Default is 1."
        ),
        title="Threads",
    )
    overwrite: OverwriteOption = Field(
        OverwriteOption.NO_OVERWRITE,
        description=(
            "What to do with existing datasets: No overwrite, Overwrite or "
            "Overwrite subset. Default is No overwrite."
        ),
        title="Overwrite",
    )
    subset_offset: Optional[str] = Field(
        None,
        description=(
            "Comma-delimited pixel offset for Overwrite subset, "
            "fastest-varying axis first. Defaults to the calibration origin."
        ),
        title="Subset Offset",
    )
    num_scales: int = Field(
        1,
        ge=1,
        description=(
            "Number of pyramid levels written by the OME-NGFF style. "
            "Default is 1."
        ),
        title="Scales",
    )
    display_progress_bar: bool = Field(
        False,
        description="Whether to show a progress bar per dataset.",
        title="Progress Bar",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level. Default is INFO.",
        title="Log Level",
    )

    @field_validator("metadata_style", mode="before")
    def _parse_metadata_style(
        cls, v: Union[str, MetadataStyle]
    ) -> Union[str, MetadataStyle]:
        return _parse_enum(MetadataStyle, v)

    @field_validator("overwrite", mode="before")
    def _parse_overwrite(
        cls, v: Union[str, OverwriteOption]
    ) -> Union[str, OverwriteOption]:
        return _parse_enum(OverwriteOption, v)

    @field_validator("log_level", mode="before")
    def _parse_log_level(cls, v: str) -> str:
        return str(v).upper()

    @classmethod
    def from_yaml(cls, yaml_path: Path):
        with open(yaml_path, "r") as f:
            yaml_dict = yaml.safe_load(f)
        return cls(**yaml_dict)

    @classmethod
    def from_args(cls, args: list):
        """Adds ability to construct settings from a list of arguments."""

        def _help_message(key: str) -> str:
            """Show help message"""
            return ExportJobConfigs.model_json_schema()["properties"][key][
                "description"
            ]

        parser = argparse.ArgumentParser()
        # Required
        parser.add_argument(
            "-i",
            "--image-path",
            required=True,
            type=str,
            help=_help_message("image_path"),
        )
        parser.add_argument(
            "-r",
            "--n5-root",
            required=True,
            type=str,
            help=_help_message("n5_root"),
        )
        # Optional
        parser.add_argument(
            "-d",
            "--n5-dataset",
            required=False,
            type=str,
            help=_help_message("n5_dataset"),
        )
        parser.add_argument(
            "-b",
            "--block-size",
            required=False,
            type=str,
            help=_help_message("block_size"),
        )
        parser.add_argument(
            "-c",
            "--compression",
            required=False,
            type=str,
            help=_help_message("compression"),
        )
        parser.add_argument(
            "--compression-kwargs",
            required=False,
            type=json.loads,
            help=_help_message("compression_kwargs"),
        )
        parser.add_argument(
            "-m",
            "--metadata-style",
            required=False,
            type=str,
            help=_help_message("metadata_style"),
        )
        parser.add_argument(
            "--metadata-template",
            required=False,
            type=str,
            help=_help_message("metadata_template"),
        )
        parser.add_argument(
            "-t",
            "--n-threads",
            required=False,
            type=int,
            help=_help_message("n_threads"),
        )
        parser.add_argument(
            "-o",
            "--overwrite",
            required=False,
            type=str,
            help=_help_message("overwrite"),
        )
        parser.add_argument(
            "--subset-offset",
            required=False,
            type=str,
            help=_help_message("subset_offset"),
        )
        parser.add_argument(
            "-s",
            "--num-scales",
            required=False,
            type=int,
            help=_help_message("num_scales"),
        )
        parser.add_argument(
            "--display-progress-bar",
            action="store_true",
            help=_help_message("display_progress_bar"),
        )
        parser.add_argument(
            "-l",
            "--log-level",
            required=False,
            type=str,
            help=_help_message("log_level"),
        )
        parser.set_defaults(display_progress_bar=False)
        job_args = parser.parse_args(args)
        # unset options keep the model defaults
        return cls(
            **{k: v for k, v in vars(job_args).items() if v is not None}
        )

    @classmethod
    def from_json_args(cls, args: list):
        """Adds ability to construct settings from a single json string."""

        parser = argparse.ArgumentParser()
        parser.add_argument(
            "--json-args",
            required=True,
            type=str,
            help="Configs passed as a single json string",
        )
        return cls(**json.loads(parser.parse_args(args).json_args))
