#!/usr/bin/env python3
"""
Thumbnail Service - Handles thumbnail generation for images
"""
import logging
from io import BytesIO
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from memoriad.errors import ArtifactError

logger = logging.getLogger(__name__)

THUMBNAIL_MAX_SIZE = 256

# Modes the PNG encoder writes directly
PNG_MODES = {"1", "L", "LA", "P", "RGB", "RGBA"}


def fit_within(width: int, height: int, max_size: int = THUMBNAIL_MAX_SIZE) -> Tuple[int, int]:
    """
    Dimensions that fit inside a max_size square, keeping aspect ratio

    The longer side is capped at max_size and the shorter one scaled by the
    same ratio, truncated to whole pixels. Images already inside the box
    keep their size.
    """
    if width >= height:
        new_w = min(width, max_size)
        new_h = int(height * (new_w / width))
    else:
        new_h = min(height, max_size)
        new_w = int(width * (new_h / height))
    return max(new_w, 1), max(new_h, 1)


class ThumbnailService:
    """Service for generating PNG thumbnails"""

    def __init__(self, max_size: int = THUMBNAIL_MAX_SIZE):
        self.max_size = max_size

    def generate_thumbnail(self, image_data: bytes) -> bytes:
        """
        Generate a thumbnail from image data

        Args:
            image_data: Original image bytes

        Returns:
            Thumbnail image bytes (PNG format)

        Raises:
            ArtifactError: the image could not be decoded or encoded
        """
        try:
            image = Image.open(BytesIO(image_data))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise ArtifactError(f"Failed to decode image: {e}") from e

        new_size = fit_within(image.width, image.height, self.max_size)
        try:
            if image.mode not in PNG_MODES:
                image = image.convert("RGBA")
            thumbnail = image.resize(new_size, Image.Resampling.LANCZOS)
            thumbnail_io = BytesIO()
            thumbnail.save(thumbnail_io, format="PNG", optimize=True)
        except (OSError, ValueError) as e:
            raise ArtifactError(f"Failed to encode thumbnail: {e}") from e

        thumbnail_bytes = thumbnail_io.getvalue()
        logger.info(f"Generated thumbnail: {image.size} -> {new_size}, {len(thumbnail_bytes)} bytes")
        return thumbnail_bytes
