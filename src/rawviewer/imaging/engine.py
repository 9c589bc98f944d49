"""External RAW decoding engine: LibRaw via rawpy, camera EXIF via Pillow.

The engine is treated as opaque. It takes a file path and returns linear
16-bit RGB samples plus whatever camera metadata the container carries.
"""

from __future__ import annotations

import logging
import struct
from typing import TYPE_CHECKING

import rawpy
from PIL import Image, UnidentifiedImageError
from PIL.ExifTags import IFD, Base

from rawviewer.imaging.models import EngineImage

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Pillow surfaces malformed TIFF/EXIF structures through all of these.
_EXIF_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    SyntaxError,
    ValueError,
    TypeError,
    KeyError,
    IndexError,
    struct.error,
)


def read_raw(path: Path) -> EngineImage:
    """Demosaic a RAW file to linear 16-bit RGB and collect its metadata.

    Raises:
        rawpy.LibRawError: If LibRaw cannot open or process the file.
    """
    with rawpy.imread(str(path)) as raw:
        rgb = raw.postprocess(
            use_camera_wb=True,
            no_auto_bright=True,
            gamma=(1, 1),
            output_bps=16,
        )
    return EngineImage(data=rgb, metadata=read_exif(path))


def read_exif(path: Path) -> dict[str, object]:
    """Read camera EXIF fields from a TIFF-based RAW container.

    Returns an empty dict when the container has no EXIF Pillow can parse,
    including corrupt IFDs; callers fill in defaults. Metadata never fails
    a decode that LibRaw already completed.
    """
    try:
        with Image.open(path) as img:
            exif = img.getexif()
            photo = exif.get_ifd(IFD.Exif)
    except _EXIF_ERRORS as exc:
        logger.debug("No readable EXIF in %s: %s", path.name, exc)
        return {}

    return {
        "camera_make": exif.get(Base.Make),
        "camera_model": exif.get(Base.Model),
        "iso": photo.get(Base.ISOSpeedRatings),
        "shutter_speed": photo.get(Base.ExposureTime),
        "aperture": photo.get(Base.FNumber),
        "focal_length": photo.get(Base.FocalLength),
    }
