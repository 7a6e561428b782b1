"""Source decoders that turn a file on disk into a raster image."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from thumbforge.errors import DecodeError


class SourceDecoder(Protocol):
    """Given a path, return a fully decoded image or raise :class:`DecodeError`."""

    def decode(self, path: Path) -> Image.Image:
        """Decode ``path`` into memory."""


class PillowDecoder:
    """Decode still images with Pillow, applying EXIF orientation."""

    def decode(self, path: Path) -> Image.Image:
        """Decode ``path`` into an RGBA image.

        Raises:
            DecodeError: if the file is corrupt or in an unsupported format.
            OSError: if the file cannot be opened.
        """

        try:
            with Image.open(path) as image:
                image.load()
                oriented = ImageOps.exif_transpose(image)
                return oriented.convert("RGBA")
        except UnidentifiedImageError as exc:
            raise DecodeError(f"Unsupported image format: {path}") from exc
        except (SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Corrupt image {path}: {exc}") from exc


__all__ = ["PillowDecoder", "SourceDecoder"]
