"""Embedded artifact metadata and cache freshness checks."""

from __future__ import annotations

from pathlib import Path
from typing import Final, Mapping

from PIL import Image, UnidentifiedImageError

from thumbforge.errors import CacheFormatError
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "freshness"})

TAG_SOFTWARE: Final[str] = "Software"
TAG_URI: Final[str] = "Thumb::URI"
TAG_SIZE: Final[str] = "Thumb::Size"
TAG_MTIME: Final[str] = "Thumb::MTime"
TAG_IMAGE_WIDTH: Final[str] = "Thumb::Image::Width"
TAG_IMAGE_HEIGHT: Final[str] = "Thumb::Image::Height"

TAG_FACE_INDEX: Final[str] = "Face::Index"
TAG_FACE_CONFIDENCE: Final[str] = "Face::Confidence"
TAG_FACE_MODEL: Final[str] = "Face::Model"


def build_tags(
    *,
    software: str,
    uri: str,
    size_bytes: int,
    mtime: int,
    extra: Mapping[str, object] | None = None,
) -> dict[str, str]:
    """Return the text tags written on every artifact, plus any ``extra`` tags."""

    tags = {
        TAG_SOFTWARE: software,
        TAG_URI: uri,
        TAG_SIZE: str(int(size_bytes)),
        TAG_MTIME: str(int(mtime)),
    }
    for key, value in (extra or {}).items():
        tags[str(key)] = str(value)
    return tags


def read_metadata(artifact_path: Path) -> dict[str, str]:
    """Return the textual key/value metadata embedded in a PNG artifact.

    Only the header is parsed; pixel data is not decoded.

    Raises:
        CacheFormatError: if the file cannot be opened or is not a PNG.
    """

    try:
        with Image.open(artifact_path) as image:
            if image.format != "PNG":
                raise CacheFormatError(f"Artifact is not a PNG: {artifact_path}")
            info = dict(image.info)
    except (OSError, SyntaxError, ValueError, UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise CacheFormatError(f"Unreadable artifact {artifact_path}: {exc}") from exc

    return {str(key): str(value) for key, value in info.items() if isinstance(value, str)}


def is_thumbnail_up_to_date(artifact_path: Path, source_path: Path) -> bool:
    """Return whether ``artifact_path`` still matches the source file on disk.

    ``Thumb::MTime`` must be present and equal the source's modification time
    in whole seconds. ``Thumb::Size`` is optional; when present it must equal
    the source's byte size. Every failure along the way means "not fresh".
    """

    try:
        tags = read_metadata(artifact_path)
    except CacheFormatError as exc:
        LOGGER.debug("artifact_metadata_unreadable", extra={"path": str(artifact_path), "error": str(exc)})
        return False

    raw_mtime = tags.get(TAG_MTIME)
    if raw_mtime is None:
        LOGGER.debug("artifact_mtime_missing", extra={"path": str(artifact_path)})
        return False

    try:
        stat = source_path.stat()
    except OSError as exc:
        LOGGER.debug("source_stat_failed", extra={"path": str(source_path), "error": str(exc)})
        return False

    try:
        cached_mtime = int(raw_mtime)
    except ValueError:
        return False

    source_mtime = int(stat.st_mtime)
    if cached_mtime != source_mtime:
        LOGGER.debug(
            "artifact_mtime_mismatch",
            extra={"path": str(artifact_path), "cached": cached_mtime, "source": source_mtime},
        )
        return False

    raw_size = tags.get(TAG_SIZE)
    if raw_size is not None:
        try:
            cached_size = int(raw_size)
        except ValueError:
            return False
        if cached_size != stat.st_size:
            LOGGER.debug(
                "artifact_size_mismatch",
                extra={"path": str(artifact_path), "cached": cached_size, "source": stat.st_size},
            )
            return False

    return True


__all__ = [
    "TAG_FACE_CONFIDENCE",
    "TAG_FACE_INDEX",
    "TAG_FACE_MODEL",
    "TAG_IMAGE_HEIGHT",
    "TAG_IMAGE_WIDTH",
    "TAG_MTIME",
    "TAG_SIZE",
    "TAG_SOFTWARE",
    "TAG_URI",
    "build_tags",
    "is_thumbnail_up_to_date",
    "read_metadata",
]
