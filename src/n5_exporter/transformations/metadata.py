"""Metadata dialects written alongside exported datasets.

Each dialect pairs a reader (image -> metadata dict) with a writer
(metadata dict -> container attributes).
"""
import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from n5_exporter.readers.image_readers import AxisType, ImageSource
from n5_exporter.writers.containers import Container

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.INFO)

PathLike = Union[str, Path]


class MetadataStyle(Enum):
    OME_NGFF = "OME-NGFF"
    N5_VIEWER = "N5 Viewer"
    COSEM = "COSEM"
    IMAGEJ = "ImageJ"
    CUSTOM = "Custom"
    NONE = "None"


# ImageJ unit names mapped to UDUNITS-2 names used by OME-NGFF
_UNIT_NAMES = {
    "micron": "micrometer",
    "microns": "micrometer",
    "um": "micrometer",
    "µm": "micrometer",
    "nm": "nanometer",
    "mm": "millimeter",
    "cm": "centimeter",
    "m": "meter",
    "sec": "second",
    "s": "second",
    "ms": "millisecond",
    "min": "minute",
    "h": "hour",
}
_NO_UNIT = {"pixel", "pixels", ""}


def ngff_unit(unit: Optional[str]) -> Optional[str]:
    if unit is None or unit.lower() in _NO_UNIT:
        return None
    return _UNIT_NAMES.get(unit, _UNIT_NAMES.get(unit.lower(), unit))


class MetadataDialect(ABC):
    style: MetadataStyle

    @abstractmethod
    def read(self, image: ImageSource) -> Dict[str, Any]:
        pass

    def write(
        self, metadata: Dict[str, Any], container: Container, path: str
    ) -> None:
        container.set_attributes(path, metadata)


class N5ViewerMetadata(MetadataDialect):
    """Single-scale N5 Viewer attributes."""

    style = MetadataStyle.N5_VIEWER

    def read(self, image: ImageSource) -> Dict[str, Any]:
        cal = image.calibration
        return {
            "pixelResolution": {
                "unit": cal.unit,
                "dimensions": [
                    cal.pixel_width,
                    cal.pixel_height,
                    cal.pixel_depth,
                ],
            },
            "downsamplingFactors": [1, 1, 1],
        }


class CosemMetadata(MetadataDialect):
    """COSEM ``transform`` attribute, listed slowest axis first."""

    style = MetadataStyle.COSEM

    def read(self, image: ImageSource) -> Dict[str, Any]:
        axes = image.get_axes()
        scale = image.get_scale()
        translation = image.get_translation()
        keep = [
            i for i, a in enumerate(axes) if a.type != AxisType.CHANNEL
        ]
        return {
            "transform": {
                "axes": [axes[i].name for i in reversed(keep)],
                "scale": [scale[i] for i in reversed(keep)],
                "translate": [translation[i] for i in reversed(keep)],
                "units": [axes[i].unit or "" for i in reversed(keep)],
                "ordering": "C",
            }
        }


class ImageJMetadata(MetadataDialect):
    """ImageJ (legacy ImagePlus) attributes."""

    style = MetadataStyle.IMAGEJ

    def read(self, image: ImageSource) -> Dict[str, Any]:
        cal = image.calibration
        return {
            "name": image.title,
            "fps": cal.fps,
            "frameInterval": cal.frame_interval,
            "pixelWidth": cal.pixel_width,
            "pixelHeight": cal.pixel_height,
            "pixelDepth": cal.pixel_depth,
            "pixelUnit": cal.unit,
            "xOrigin": cal.x_origin,
            "yOrigin": cal.y_origin,
            "zOrigin": cal.z_origin,
            "numChannels": image.n_channels,
            "numSlices": image.n_slices,
            "numFrames": image.n_frames,
            "type": "rgb" if image.is_rgb else str(image.dtype),
            "properties": dict(image.properties),
        }


class MetadataTemplateMapper:
    """
    Maps ImageJ attributes through a JSON-like template.

    String values of the form ``"$key"`` are replaced by the ImageJ
    attribute ``key``; everything else is copied verbatim.
    """

    def __init__(self, template: Dict[str, Any]):
        self.template = template

    @classmethod
    def from_json(cls, filepath: PathLike) -> "MetadataTemplateMapper":
        with open(filepath) as f:
            return cls(json.load(f))

    def _fill(self, value, source: Dict[str, Any]):
        if isinstance(value, str) and value.startswith("$"):
            key = value[1:]
            if key not in source:
                raise KeyError(f"template references unknown key '{key}'")
            return source[key]
        if isinstance(value, dict):
            return {k: self._fill(v, source) for k, v in value.items()}
        if isinstance(value, list):
            return [self._fill(v, source) for v in value]
        return value

    def __call__(self, source: Dict[str, Any]) -> Dict[str, Any]:
        return self._fill(self.template, source)


RESOLUTION_ONLY_MAPPER = MetadataTemplateMapper(
    {
        "resolution": ["$pixelWidth", "$pixelHeight", "$pixelDepth"],
        "unit": "$pixelUnit",
    }
)


class CustomMetadata(MetadataDialect):
    """User-supplied mapping applied to the ImageJ attributes."""

    style = MetadataStyle.CUSTOM

    def __init__(
        self,
        mapper: Callable[[Dict[str, Any]], Dict[str, Any]] = None,
    ):
        self.mapper = mapper or RESOLUTION_ONLY_MAPPER

    def read(self, image: ImageSource) -> Dict[str, Any]:
        return self.mapper(ImageJMetadata().read(image))


class OmeNgffMetadata(MetadataDialect):
    """
    OME-NGFF v0.4 single-scale description of an image.

    ``read`` returns axes, scale and translation in natural (fastest-varying
    first) order. The multiscale builder reorders them for the container.
    """

    style = MetadataStyle.OME_NGFF

    def read(self, image: ImageSource) -> Dict[str, Any]:
        return {
            "axes": axes_to_dicts(image),
            "axis_types": [t.value for t in image.axis_types],
            "scale": image.get_scale(),
            "translation": image.get_translation(),
        }

    def write(
        self, metadata: Dict[str, Any], container: Container, path: str
    ) -> None:
        """
        Write ``coordinateTransformations`` to `path`.

        Transformations already in `metadata` are written as given, in
        container order. Otherwise they are built from the natural-order
        ``scale`` and ``translation`` returned by ``read``.
        """
        transforms = metadata.get("coordinateTransformations")
        if transforms is None:
            scale = list(metadata["scale"])
            translation = list(metadata["translation"])
            if container.is_c_order:
                scale.reverse()
                translation.reverse()
            transforms = compute_coordinate_transformations(
                scale, translation
            )
        container.set_attributes(
            path, {"coordinateTransformations": transforms}
        )


def compute_coordinate_transformations(
    scale: Sequence[float], translation: Sequence[float]
) -> List[Dict[str, Any]]:
    transforms = [{"type": "scale", "scale": [float(s) for s in scale]}]
    if any(t != 0 for t in translation):
        transforms.append(
            {
                "type": "translation",
                "translation": [float(t) for t in translation],
            }
        )
    return transforms


def axes_to_dicts(image: ImageSource) -> List[Dict[str, str]]:
    axes = []
    for axis in image.get_axes():
        d = {"name": axis.name, "type": axis.type.value}
        unit = ngff_unit(axis.unit)
        if unit is not None and axis.type != AxisType.CHANNEL:
            d["unit"] = unit
        axes.append(d)
    return axes


def get_dialect(
    style: MetadataStyle,
    mapper: Callable[[Dict[str, Any]], Dict[str, Any]] = None,
) -> Optional[MetadataDialect]:
    """
    The dialect for a metadata style, or None for MetadataStyle.NONE.

    Args:
        style: the selected style
        mapper: the template mapper, used by MetadataStyle.CUSTOM only
    """
    style = MetadataStyle(style)
    if style == MetadataStyle.NONE:
        return None
    if style == MetadataStyle.CUSTOM:
        return CustomMetadata(mapper)
    dialects = {
        MetadataStyle.OME_NGFF: OmeNgffMetadata,
        MetadataStyle.N5_VIEWER: N5ViewerMetadata,
        MetadataStyle.COSEM: CosemMetadata,
        MetadataStyle.IMAGEJ: ImageJMetadata,
    }
    return dialects[style]()


def write_metadata(
    container: Container,
    path: str,
    dialect: Optional[MetadataDialect],
    image: ImageSource,
) -> bool:
    """
    Read metadata for `image` and write it to `path`.
    Failures are logged and never propagate.

    Returns:
        True if metadata was written
    """
    if dialect is None:
        return False
    try:
        metadata = dialect.read(image)
        dialect.write(metadata, container, path)
    except Exception:
        LOGGER.exception(
            f"Failed to write {dialect.style.value} metadata to {path}"
        )
        return False
    return True
