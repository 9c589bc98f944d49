"""Decode orchestration: stage an upload, run the RAW engine, validate, shrink, pack.

Every call is request-local. The only shared resource is the temp
directory, and each call stages to its own uniquely named file that is
removed before the call returns.
"""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np

from rawviewer.errors import (
    DecodeFailedError,
    EmptyInputError,
    UnsupportedChannelLayoutError,
)
from rawviewer.imaging.engine import read_raw
from rawviewer.imaging.models import DecodedImage, DecodeResult, EngineImage, ImageMetadata
from rawviewer.imaging.resize import resize_to_max_dimension

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from rawviewer.config import Settings

logger = logging.getLogger(__name__)

BITS_PER_SAMPLE = 16
SUPPORTED_CHANNELS = frozenset({3, 4})
TEMP_PREFIX = "rawviewer-"


class Decoder(Protocol):
    """Protocol for turning uploaded RAW bytes into an envelope-ready result."""

    def decode(self, raw_data: bytes | bytearray, extension: str, max_dimension: int) -> DecodeResult:
        """Decode ``raw_data`` and shrink it to ``max_dimension`` (0 = keep size).

        Raises:
            DecodeError: If the input is empty or cannot be decoded.
        """
        ...


def normalize_extension(extension: str, default: str = ".dng") -> str:
    """Return ``extension`` with a leading dot, or ``default`` when empty."""
    if not extension:
        extension = default
    if not extension.startswith("."):
        extension = "." + extension
    return extension


@contextmanager
def staged_upload(raw_data: bytes | bytearray, suffix: str) -> Iterator[Path]:
    """Write ``raw_data`` to a fresh temp file and remove it on exit."""
    fd, name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=suffix)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(raw_data)
        yield path
    finally:
        path.unlink(missing_ok=True)


def pack_samples(data: np.ndarray) -> bytes:
    """Pack 16-bit samples as little-endian bytes in row-major order."""
    return data.astype("<u2", copy=False).tobytes(order="C")


class RawDecoder:
    """Decodes RAW uploads with an external engine (rawpy by default)."""

    def __init__(self, settings: Settings, engine: Callable[[Path], EngineImage] = read_raw) -> None:
        self._default_extension = settings.default_extension
        self._engine = engine

    def decode(self, raw_data: bytes | bytearray, extension: str, max_dimension: int) -> DecodeResult:
        if not raw_data:
            raise EmptyInputError("empty input")

        suffix = normalize_extension(extension, self._default_extension)
        try:
            with staged_upload(raw_data, suffix) as path:
                output = self._run_engine(path)
        except OSError as exc:
            raise DecodeFailedError(f"stage upload: {exc}") from exc

        image = self._validate(output.data)
        original_width, original_height = image.width, image.height
        if max_dimension > 0:
            image = resize_to_max_dimension(image, max_dimension)

        logger.info(
            "Decoded %s upload (%d bytes): %dx%d -> %dx%d, %d channels",
            suffix,
            len(raw_data),
            original_width,
            original_height,
            image.width,
            image.height,
            image.channels,
        )

        return DecodeResult(
            width=image.width,
            height=image.height,
            channels=image.channels,
            bits_per_sample=BITS_PER_SAMPLE,
            pixel_bytes=pack_samples(image.data),
            metadata=ImageMetadata.from_engine(output.metadata, original_width, original_height),
        )

    # -- Internal -----------------------------------------------------------

    def _run_engine(self, path: Path) -> EngineImage:
        try:
            output = self._engine(path)
        except Exception as exc:
            raise DecodeFailedError(f"raw decode failed: {exc}") from exc
        if output is None or output.data is None or output.data.size == 0:
            raise DecodeFailedError("raw decode returned empty image")
        return output

    @staticmethod
    def _validate(data: np.ndarray) -> DecodedImage:
        channels = data.shape[-1] if data.ndim == 3 else 1
        if data.ndim != 3 or channels not in SUPPORTED_CHANNELS:
            raise UnsupportedChannelLayoutError(f"unsupported channel layout: {channels}")
        if data.dtype != np.uint16:
            raise DecodeFailedError(f"unsupported sample type: {data.dtype}")
        return DecodedImage(data=np.ascontiguousarray(data))
