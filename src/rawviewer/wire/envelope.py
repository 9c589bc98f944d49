"""Binary decode envelope: one response body carrying geometry, metadata, and pixels.

Layout (all integers little-endian uint32)::

    0   magic "RVD1"
    4   width
    8   height
    12  channels
    16  bits per sample
    20  pixel byte length
    24  metadata byte length
    28  metadata block (compact JSON)
    ..  pixel block
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
from pydantic_core import PydanticSerializationError, to_json

from rawviewer.errors import (
    EncodingError,
    InvalidGeometryError,
    InvalidSampleFormatError,
    MalformedEnvelopeError,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

MAGIC = b"RVD1"
HEADER = struct.Struct("<4s6I")
HEADER_SIZE = HEADER.size

VALID_BITS_PER_SAMPLE = (8, 16)


def _check_layout(width: int, height: int, channels: int, bits_per_sample: int) -> None:
    if width <= 0 or height <= 0:
        raise InvalidGeometryError(f"invalid image dimensions: {width}x{height}")
    if not 1 <= channels <= 4:
        raise InvalidGeometryError(f"invalid channels: {channels}")
    if bits_per_sample not in VALID_BITS_PER_SAMPLE:
        raise InvalidSampleFormatError(f"invalid bits per sample: {bits_per_sample}")


def build_envelope(
    width: int,
    height: int,
    channels: int,
    bits_per_sample: int,
    metadata: Any,
    pixel_bytes: bytes,
) -> bytes:
    """Serialize an image and its metadata into a single envelope.

    ``metadata`` may be a pydantic model (serialized by alias, in field
    order) or any JSON-compatible value.

    Raises:
        InvalidGeometryError: For non-positive dimensions or channels outside 1-4.
        InvalidSampleFormatError: For bits per sample other than 8 or 16.
        EncodingError: If the metadata cannot be serialized or a field overflows uint32.
    """
    _check_layout(width, height, channels, bits_per_sample)

    try:
        meta_bytes = to_json(metadata, by_alias=True)
    except PydanticSerializationError as exc:
        raise EncodingError(f"encode metadata: {exc}") from exc

    try:
        header = HEADER.pack(MAGIC, width, height, channels, bits_per_sample, len(pixel_bytes), len(meta_bytes))
    except struct.error as exc:
        raise EncodingError(f"encode header: {exc}") from exc

    return b"".join((header, meta_bytes, pixel_bytes))


@dataclass(frozen=True)
class Envelope:
    """A parsed decode envelope."""

    width: int
    height: int
    channels: int
    bits_per_sample: int
    metadata: dict[str, Any]
    pixel_bytes: bytes

    def samples(self) -> NDArray[np.uint8] | NDArray[np.uint16]:
        """Return the pixel block as a (height, width, channels) array."""
        if self.bits_per_sample == 16:
            even = len(self.pixel_bytes) - len(self.pixel_bytes) % 2
            flat = np.frombuffer(self.pixel_bytes[:even], dtype="<u2").astype(np.uint16)
        else:
            flat = np.frombuffer(self.pixel_bytes, dtype=np.uint8)
        return flat.reshape(self.height, self.width, self.channels)


def parse_envelope(data: bytes) -> Envelope:
    """Parse an envelope produced by :func:`build_envelope`.

    Raises:
        MalformedEnvelopeError: If the buffer is short, truncated, has the
            wrong magic, or declares an invalid layout.
    """
    if len(data) < HEADER_SIZE:
        raise MalformedEnvelopeError("decode response too short")

    magic, width, height, channels, bits, pixel_len, meta_len = HEADER.unpack_from(data)
    if magic != MAGIC:
        raise MalformedEnvelopeError("invalid decode response magic")
    try:
        _check_layout(width, height, channels, bits)
    except EncodingError as exc:
        raise MalformedEnvelopeError(str(exc)) from exc

    pixels_offset = HEADER_SIZE + meta_len
    total = pixels_offset + pixel_len
    if total > len(data):
        raise MalformedEnvelopeError("decode response is truncated")

    try:
        metadata = json.loads(data[HEADER_SIZE:pixels_offset])
    except ValueError as exc:
        raise MalformedEnvelopeError(f"invalid metadata block: {exc}") from exc

    return Envelope(
        width=width,
        height=height,
        channels=channels,
        bits_per_sample=bits,
        metadata=metadata,
        pixel_bytes=bytes(data[pixels_offset:total]),
    )
