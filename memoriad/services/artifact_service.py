#!/usr/bin/env python3
"""
Artifact Service - On-disk originals and thumbnails for image items
"""
import logging
from pathlib import Path

from memoriad.errors import ArtifactError

logger = logging.getLogger(__name__)


def mime_to_ext(mime: str) -> str:
    """
    File extension for a MIME type

    image/png -> png, image/svg+xml; charset=utf-8 -> svg+xml, text -> bin
    """
    if "/" not in mime:
        return "bin"
    subtype = mime.split("/", 1)[1].split(";", 1)[0].strip()
    return subtype or "bin"


class ArtifactService:
    """Writes and removes image files keyed by content hash"""

    def __init__(self, data_dir: Path):
        """
        Initialize artifact service

        Args:
            data_dir: Root data directory; files live under data_dir/images
        """
        self.data_dir = Path(data_dir)
        self.originals_dir = self.data_dir / "images" / "originals"
        self.thumbs_dir = self.data_dir / "images" / "thumbs"

    def original_path(self, data_hash: str, ext: str) -> Path:
        return self.originals_dir / f"{data_hash}.{ext}"

    def thumbnail_path(self, data_hash: str) -> Path:
        return self.thumbs_dir / f"{data_hash}.png"

    def _write(self, path: Path, data: bytes) -> Path:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise ArtifactError(f"Failed to write {path}: {e}") from e
        return path

    def save_original(self, data_hash: str, ext: str, data: bytes) -> Path:
        """Write the original image bytes. Overwrites an existing file."""
        path = self._write(self.original_path(data_hash, ext), data)
        logger.debug(f"Saved original image: {path}")
        return path

    def save_thumbnail(self, data_hash: str, png_bytes: bytes) -> Path:
        """Write the PNG thumbnail. Overwrites an existing file."""
        path = self._write(self.thumbnail_path(data_hash), png_bytes)
        logger.debug(f"Saved thumbnail: {path}")
        return path

    def remove_for_hash(self, data_hash: str):
        """
        Remove the thumbnail and any original for a hash

        Originals are matched by the "<hash>." prefix since the extension
        is not known here. Missing files are ignored; other errors are
        logged and not raised.
        """
        self._remove(self.thumbnail_path(data_hash), "thumbnail")

        if not self.originals_dir.is_dir():
            return
        try:
            candidates = list(self.originals_dir.glob(f"{data_hash}.*"))
        except OSError as e:
            logger.warning(f"Failed to scan {self.originals_dir}: {e}")
            return
        for path in candidates:
            if path.is_file():
                self._remove(path, "original image")

    @staticmethod
    def _remove(path: Path, label: str):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete {label} {path}: {e}")
