"""Nearest-neighbor downsampling to a maximum long-side dimension."""

from __future__ import annotations

import math

import numpy as np

from rawviewer.imaging.models import DecodedImage


def target_size(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Return the (width, height) an image is reduced to, never below 1x1."""
    scale = max_dimension / max(width, height)
    return max(1, math.floor(width * scale)), max(1, math.floor(height * scale))


def resize_to_max_dimension(image: DecodedImage, max_dimension: int) -> DecodedImage:
    """Shrink ``image`` so its longer side is at most ``max_dimension``.

    Destination pixel (x, y) copies the full channel tuple of source pixel
    (x * width // target_width, y * height // target_height). Images that
    already fit, and non-positive limits, are returned unchanged.
    """
    if max_dimension <= 0 or image.longer_side <= max_dimension:
        return image

    target_w, target_h = target_size(image.width, image.height, max_dimension)
    src_x = np.arange(target_w, dtype=np.int64) * image.width // target_w
    src_y = np.arange(target_h, dtype=np.int64) * image.height // target_h
    resized = image.data[src_y[:, np.newaxis], src_x[np.newaxis, :]]
    return DecodedImage(data=resized)
