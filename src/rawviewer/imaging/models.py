"""Records passed between the RAW engine, the decoder, and the wire layer."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from numbers import Real
from typing import TYPE_CHECKING, Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_serializer

if TYPE_CHECKING:
    from numpy.typing import NDArray


@dataclass(frozen=True)
class DecodedImage:
    """A dense row-major image buffer of 16-bit samples.

    ``data`` has shape (height, width, channels), so its flattened length is
    always width * height * channels.
    """

    data: NDArray[np.uint16]

    def __post_init__(self) -> None:
        if self.data.ndim != 3:
            raise ValueError(f"expected a (height, width, channels) array, got shape {self.data.shape}")
        if self.data.dtype != np.uint16:
            raise ValueError(f"expected uint16 samples, got {self.data.dtype}")
        if self.height <= 0 or self.width <= 0 or self.channels <= 0:
            raise ValueError(f"empty image buffer: shape {self.data.shape}")

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def channels(self) -> int:
        return int(self.data.shape[2])

    @property
    def longer_side(self) -> int:
        return max(self.width, self.height)


@dataclass(frozen=True)
class EngineImage:
    """Raw output of the external decoding engine.

    ``metadata`` is whatever the engine could report, keyed by
    ``camera_make``, ``camera_model``, ``iso``, ``shutter_speed``,
    ``aperture`` and ``focal_length``. Any key may be missing.
    """

    data: NDArray[np.generic] | None
    metadata: Mapping[str, object] = field(default_factory=dict)


def _as_str(value: object) -> str:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        return ""
    return value.strip("\x00").strip()


def _as_float(value: object) -> float:
    if isinstance(value, Real) and not isinstance(value, bool):
        result = float(value)
        # IFDRational reports 0/0 as NaN.
        return result if result == result else 0.0
    return 0.0


def _as_int(value: object) -> int:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        value = value[0] if value else 0
    return int(_as_float(value))


class ImageMetadata(BaseModel):
    """Camera metadata serialized verbatim into the envelope metadata block."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, protected_namespaces=())

    make: str = ""
    model: str = ""
    iso: int = 0
    shutter: float = 0.0
    aperture: float = 0.0
    focal_length: float = Field(default=0.0, alias="focalLength")
    width: int = 0
    height: int = 0
    description: str = ""
    artist: str = ""

    @field_serializer("shutter", "aperture", "focal_length")
    def _serialize_float(self, value: float) -> Any:
        # Integral floats go on the wire without a fraction: 2, not 2.0.
        return int(value) if value.is_integer() else value

    @classmethod
    def from_engine(cls, bag: Mapping[str, object], width: int, height: int) -> ImageMetadata:
        """Build the fixed record from a loosely-typed engine report.

        ``width`` and ``height`` are the pre-resize dimensions. Missing or
        unusable values fall back to empty strings and zeros.
        """
        return cls(
            make=_as_str(bag.get("camera_make")),
            model=_as_str(bag.get("camera_model")),
            iso=_as_int(bag.get("iso")),
            shutter=_as_float(bag.get("shutter_speed")),
            aperture=_as_float(bag.get("aperture")),
            focal_length=_as_float(bag.get("focal_length")),
            width=width,
            height=height,
        )


@dataclass(frozen=True)
class DecodeResult:
    """Geometry, metadata, and packed pixel bytes for one decoded upload."""

    width: int
    height: int
    channels: int
    bits_per_sample: int
    pixel_bytes: bytes
    metadata: ImageMetadata
