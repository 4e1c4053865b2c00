"""Image sources that feed the exporter.
"""
import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import dask.array as da
import numpy as np
import tifffile
from pydantic import BaseModel

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.INFO)

PathLike = Union[str, Path]


class AxisType(Enum):
    SPACE = "space"
    CHANNEL = "channel"
    TIME = "time"


class Axis(BaseModel):
    name: str
    type: AxisType
    unit: Optional[str] = None


class Calibration(BaseModel):
    """Physical calibration of an image, in ImageJ conventions.

    Origins are in pixel units, so the physical position of the first
    pixel along x is ``-x_origin * pixel_width``.
    """

    pixel_width: float = 1.0
    pixel_height: float = 1.0
    pixel_depth: float = 1.0
    unit: str = "pixel"
    x_origin: float = 0.0
    y_origin: float = 0.0
    z_origin: float = 0.0
    frame_interval: float = 0.0
    time_unit: str = "sec"
    fps: float = 0.0


class ImageSource:
    """
    A multi-dimensional image with ImageJ hyperstack semantics.

    Pixel data is held row-major with axes drawn from ``tzcyx`` (in that
    order). Singleton c, z and t axes are dropped, as ImageJ does, so the
    natural (fastest-varying first) axis order is x, y, then whichever of
    c, z, t are present.
    """

    ROW_MAJOR_AXES = "tzcyx"
    _DEFAULT_AXES = {2: "yx", 3: "zyx", 4: "czyx", 5: "tzcyx"}
    _AXIS_TYPES = {
        "x": AxisType.SPACE,
        "y": AxisType.SPACE,
        "z": AxisType.SPACE,
        "c": AxisType.CHANNEL,
        "t": AxisType.TIME,
    }

    def __init__(
        self,
        data: Union[np.ndarray, da.Array],
        axes: Optional[str] = None,
        calibration: Optional[Calibration] = None,
        title: str = "image",
        properties: Optional[dict] = None,
    ):
        """
        Class constructor

        Args:
            data: the pixel array, row-major
            axes: one letter per array axis, a subsequence of "tzcyx",
                optionally followed by "s" for RGB samples. Inferred from
                the array rank if omitted.
            calibration: the physical calibration
            title: the image title
            properties: free-form image properties
        """
        if axes is None:
            try:
                axes = self._DEFAULT_AXES[data.ndim]
            except KeyError:
                raise ValueError(
                    f"cannot infer axes for a {data.ndim}D array"
                )
        axes = axes.lower()
        if len(axes) != data.ndim:
            raise ValueError(
                f"axes '{axes}' do not match array of rank {data.ndim}"
            )

        self.is_rgb = False
        if axes.endswith("s"):
            data = self._pack_rgb(data)
            axes = axes[:-1]
            self.is_rgb = True

        if not ("x" in axes and "y" in axes):
            raise ValueError(f"axes '{axes}' must include x and y")
        if list(axes) != [a for a in self.ROW_MAJOR_AXES if a in axes]:
            raise ValueError(
                f"axes '{axes}' must be ordered as a subsequence of "
                f"'{self.ROW_MAJOR_AXES}'"
            )

        # ImageJ drops singleton channel, slice and frame dimensions
        squeeze = tuple(
            i for i, a in enumerate(axes) if a in "czt" and data.shape[i] == 1
        )
        if squeeze:
            data = data.squeeze(axis=squeeze)
            axes = "".join(a for i, a in enumerate(axes) if i not in squeeze)

        if not isinstance(data, da.Array):
            data = da.from_array(data, chunks=data.shape)

        self._data = data
        self._axes = axes
        self.calibration = calibration or Calibration()
        self.title = title
        self.properties = properties or {}

    @staticmethod
    def _pack_rgb(data) -> Union[np.ndarray, da.Array]:
        """Pack trailing RGB samples into ARGB uint32 pixels."""
        if data.shape[-1] not in (3, 4) or data.dtype != np.uint8:
            raise ValueError(
                "RGB images must have 3 or 4 uint8 samples per pixel"
            )
        r = data[..., 0].astype(np.uint32)
        g = data[..., 1].astype(np.uint32)
        b = data[..., 2].astype(np.uint32)
        return (0xFF << 24) | (r << 16) | (g << 8) | b

    @property
    def ndim(self) -> int:
        return self._data.ndim

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def axis_names(self) -> List[str]:
        """Axis names, fastest-varying first."""
        return list(reversed(self._axes))

    @property
    def axis_types(self) -> List[AxisType]:
        return [self._AXIS_TYPES[a] for a in self.axis_names]

    def get_dimensions(self) -> Tuple[int, ...]:
        """Axis extents, fastest-varying first."""
        return tuple(int(s) for s in reversed(self._data.shape))

    def _extent(self, axis: str) -> int:
        if axis not in self._axes:
            return 1
        return int(self._data.shape[self._axes.index(axis)])

    @property
    def n_channels(self) -> int:
        return self._extent("c")

    @property
    def n_slices(self) -> int:
        return self._extent("z")

    @property
    def n_frames(self) -> int:
        return self._extent("t")

    @property
    def channel_axis(self) -> Optional[int]:
        """Index of the channel axis in natural order, if present."""
        if "c" not in self._axes:
            return None
        return self.axis_names.index("c")

    def as_dask_array(self) -> da.Array:
        """The whole image, row-major."""
        return self._data

    def channel_view(self, channel: int) -> da.Array:
        """A hyperslice with the channel axis fixed, row-major."""
        if "c" not in self._axes:
            if channel != 0:
                raise IndexError(f"image has no channel {channel}")
            return self._data
        if not 0 <= channel < self.n_channels:
            raise IndexError(
                f"channel {channel} out of range for {self.n_channels} "
                f"channels"
            )
        sl = [slice(None)] * self.ndim
        sl[self._axes.index("c")] = channel
        return self._data[tuple(sl)]

    def subsampled_view(self, factors: Sequence[int]) -> da.Array:
        """
        Every factor-th pixel along each axis, row-major.

        Args:
            factors: subsampling factor per axis, fastest-varying first
        """
        if len(factors) != self.ndim:
            raise ValueError(
                f"expected {self.ndim} factors, got {len(factors)}"
            )
        return self._data[
            tuple(slice(None, None, int(f)) for f in reversed(factors))
        ]

    def get_scale(self) -> List[float]:
        """Physical size of one pixel per axis, fastest-varying first."""
        cal = self.calibration
        scales = {
            "x": cal.pixel_width,
            "y": cal.pixel_height,
            "z": cal.pixel_depth,
            "c": 1.0,
            "t": cal.frame_interval if cal.frame_interval > 0 else 1.0,
        }
        return [float(scales[a]) for a in self.axis_names]

    def get_translation(self) -> List[float]:
        """Physical position of the first pixel, fastest-varying first."""
        cal = self.calibration
        translations = {
            "x": -cal.x_origin * cal.pixel_width,
            "y": -cal.y_origin * cal.pixel_height,
            "z": -cal.z_origin * cal.pixel_depth,
            "c": 0.0,
            "t": 0.0,
        }
        # adding 0.0 turns -0.0 into 0.0
        return [float(translations[a]) + 0.0 for a in self.axis_names]

    def get_axes(self) -> List[Axis]:
        """Axis descriptors, fastest-varying first."""
        axes = []
        for name, axis_type in zip(self.axis_names, self.axis_types):
            if axis_type == AxisType.SPACE:
                unit = self.calibration.unit
            elif axis_type == AxisType.TIME:
                unit = self.calibration.time_unit
            else:
                unit = None
            axes.append(Axis(name=name, type=axis_type, unit=unit))
        return axes

    def __repr__(self):
        return (
            f"ImageSource(title={self.title!r}, "
            f"dimensions={self.get_dimensions()}, axes={self.axis_names}, "
            f"dtype={self.dtype})"
        )


def offset_from_calibration(image: ImageSource) -> Tuple[int, ...]:
    """
    Derive a subset-write offset from the calibration origin.

    Only x, y and (for stacks) z receive the origin, every other axis is
    written at 0.
    """
    cal = image.calibration
    origins = {
        "x": int(cal.x_origin),
        "y": int(cal.y_origin),
        "z": int(cal.z_origin),
    }
    return tuple(origins.get(a, 0) for a in image.axis_names)


def _tiff_axes(series_axes: str) -> str:
    axes = series_axes.lower()
    # image sequences and unknown axes become slices when z is free
    for placeholder in ("i", "q"):
        if placeholder in axes and "z" not in axes:
            axes = axes.replace(placeholder, "z", 1)
    return axes


def _tiff_calibration(tif: tifffile.TiffFile) -> Calibration:
    cal = Calibration()
    page = tif.pages[0]
    for tag_name, field in (
        ("XResolution", "pixel_width"),
        ("YResolution", "pixel_height"),
    ):
        tag = page.tags.get(tag_name)
        if tag is not None:
            num, den = tag.value
            if num:
                setattr(cal, field, den / num)
    ij = tif.imagej_metadata or {}
    if "spacing" in ij:
        cal.pixel_depth = float(ij["spacing"])
    if "unit" in ij:
        cal.unit = str(ij["unit"])
    if "finterval" in ij:
        cal.frame_interval = float(ij["finterval"])
    if "fps" in ij:
        cal.fps = float(ij["fps"])
    for key, field in (
        ("xorigin", "x_origin"),
        ("yorigin", "y_origin"),
        ("zorigin", "z_origin"),
    ):
        if key in ij:
            setattr(cal, field, float(ij[key]))
    return cal


def read_tiff(filepath: PathLike) -> ImageSource:
    """
    Read a TIFF (optionally an ImageJ hyperstack) as an ImageSource.

    Args:
        filepath: the path to the TIFF

    Returns:
        the ImageSource
    """
    filepath = Path(filepath)
    with tifffile.TiffFile(filepath) as tif:
        series = tif.series[0]
        axes = _tiff_axes(series.axes)
        data = series.asarray()
        calibration = _tiff_calibration(tif)
    LOGGER.info(
        f"Read {filepath.name}: shape {data.shape}, axes {axes}, "
        f"dtype {data.dtype}"
    )
    return ImageSource(
        data, axes=axes, calibration=calibration, title=filepath.stem
    )
