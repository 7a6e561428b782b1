"""Filesystem cache for previews, face crops and fail markers.

Layout under ``thumbnails_root``::

    {bucket.dirname}/{hash}.png   previews, one per bucket
    fail/{hash}.png               fail marker, independent of bucket

Every artifact is a PNG carrying the freedesktop.org ``Thumb::*`` text tags.
Writes go to a temporary file in the destination directory which is renamed
into place, so readers see either no file, the old file, or the complete new
one. The cache relies on that rename alone; there is no locking.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from PIL import Image
from PIL.PngImagePlugin import PngInfo

from thumbforge.buckets import ThumbnailBucket, largest_first
from thumbforge.errors import CacheFormatError
from thumbforge.hasher import MD5_ALGO, canonical_uri, compute_uri_hash
from thumbforge.media import SourceMedia
from thumbforge.metadata import (
    TAG_IMAGE_HEIGHT,
    TAG_IMAGE_WIDTH,
    build_tags,
    is_thumbnail_up_to_date,
    read_metadata,
)
from thumbforge.thumbnailing import build_thumbnail_image, to_rgba
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "thumbnail_store"})

DEFAULT_SOFTWARE = "thumbforge"
FAIL_DIRNAME = "fail"


@dataclass(frozen=True)
class CachedArtifact:
    """A fresh artifact found in the cache."""

    hash_id: str
    bucket: ThumbnailBucket | None
    path: Path
    width: int
    height: int
    tags: dict[str, str]


@dataclass
class CascadeOutcome:
    """What :meth:`ThumbnailStore.generate` did for one source."""

    hash_id: str
    written: list[ThumbnailBucket] = field(default_factory=list)
    cached: list[ThumbnailBucket] = field(default_factory=list)
    fail_marker: bool = False


class ThumbnailStore:
    """Persist and look up derived artifacts keyed by source URI hash."""

    def __init__(
        self,
        thumbnails_root: Path,
        *,
        software: str = DEFAULT_SOFTWARE,
        hash_algo: str = MD5_ALGO,
    ) -> None:
        self._root = Path(thumbnails_root)
        self._software = software
        self._hash_algo = hash_algo

    @property
    def root(self) -> Path:
        return self._root

    @property
    def software(self) -> str:
        return self._software

    def hash_for(self, source: SourceMedia) -> str:
        """Return the cache key for ``source``.

        Raises:
            EncodingError: if the host path cannot be expressed as a URI.
        """

        return compute_uri_hash(canonical_uri(source.host_path), self._hash_algo)

    def thumbnail_path(self, hash_id: str, bucket: ThumbnailBucket) -> Path:
        return self._root / bucket.dirname / f"{hash_id}.png"

    def fail_marker_path(self, hash_id: str) -> Path:
        return self._root / FAIL_DIRNAME / f"{hash_id}.png"

    def source_tags(
        self,
        source: SourceMedia,
        image: Image.Image | None = None,
        extra: Mapping[str, object] | None = None,
    ) -> dict[str, str]:
        """Build the metadata tags recorded for artifacts derived from ``source``.

        When the decoded ``image`` is given its dimensions are recorded as well.
        """

        merged: dict[str, object] = {}
        if image is not None:
            merged[TAG_IMAGE_WIDTH] = image.width
            merged[TAG_IMAGE_HEIGHT] = image.height
        merged.update(extra or {})

        return build_tags(
            software=self._software,
            uri=canonical_uri(source.host_path),
            size_bytes=source.size_bytes,
            mtime=source.mtime,
            extra=merged,
        )

    def lookup(self, hash_id: str, bucket: ThumbnailBucket, source: SourceMedia) -> CachedArtifact | None:
        """Return the cached preview for ``bucket`` if it exists and is fresh."""

        path = self.thumbnail_path(hash_id, bucket)
        if not path.exists() or not is_thumbnail_up_to_date(path, source.sandbox_path):
            return None

        try:
            tags = read_metadata(path)
            with Image.open(path) as image:
                width, height = image.size
        except (CacheFormatError, OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            LOGGER.debug("thumbnail_lookup_unreadable", extra={"path": str(path), "error": str(exc)})
            return None

        return CachedArtifact(hash_id=hash_id, bucket=bucket, path=path, width=width, height=height, tags=tags)

    def has_fresh_fail_marker(self, hash_id: str, source: SourceMedia) -> bool:
        path = self.fail_marker_path(hash_id)
        return path.exists() and is_thumbnail_up_to_date(path, source.sandbox_path)

    def persist(self, image: Image.Image, dest_path: Path, tags: Mapping[str, str]) -> None:
        """Atomically write ``image`` as an RGBA PNG with ``tags`` at ``dest_path``.

        Raises:
            OSError: if the directory, temporary file or rename fails. The
                temporary file is removed and ``dest_path`` is left untouched.
        """

        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        pnginfo = PngInfo()
        for key, value in tags.items():
            pnginfo.add_text(key, value)

        fd, temp_name = tempfile.mkstemp(prefix="thumb-", suffix=".png.tmp", dir=dest_path.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                to_rgba(image).save(handle, format="PNG", pnginfo=pnginfo)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, dest_path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass
            raise

        LOGGER.debug("artifact_written", extra={"path": str(dest_path)})

    def record_failure(self, hash_id: str, tags: Mapping[str, str]) -> Path:
        """Write a fail marker so generation is skipped until the source changes."""

        path = self.fail_marker_path(hash_id)
        self.persist(Image.new("RGBA", (1, 1), (0, 0, 0, 0)), path, tags)
        LOGGER.info("fail_marker_recorded", extra={"hash_id": hash_id, "path": str(path)})
        return path

    def record_failure_for(self, source: SourceMedia) -> Path:
        return self.record_failure(self.hash_for(source), self.source_tags(source))

    def generate(
        self,
        source: SourceMedia,
        image: Image.Image,
        buckets: list[ThumbnailBucket] | None = None,
    ) -> CascadeOutcome:
        """Make sure a fresh preview exists for every bucket, largest first.

        Each bucket that has to be generated is resized from the previous
        bucket's output, or from ``image`` while nothing has been generated
        yet, so the source is decoded once per call. A fresh fail marker skips
        every bucket.

        Raises:
            EncodingError: if the host path cannot be expressed as a URI.
            OSError: if writing a preview fails.
        """

        hash_id = self.hash_for(source)
        outcome = CascadeOutcome(hash_id=hash_id)

        if self.has_fresh_fail_marker(hash_id, source):
            LOGGER.info("fail_marker_fresh_skip", extra={"hash_id": hash_id, "path": str(source.host_path)})
            outcome.fail_marker = True
            return outcome

        tags = self.source_tags(source, image)
        buffer = to_rgba(image)

        for bucket in largest_first(buckets):
            thumb_path = self.thumbnail_path(hash_id, bucket)
            if thumb_path.exists() and is_thumbnail_up_to_date(thumb_path, source.sandbox_path):
                LOGGER.debug("thumbnail_cache_hit", extra={"hash_id": hash_id, "bucket": bucket.dirname})
                outcome.cached.append(bucket)
                continue

            thumbnail = build_thumbnail_image(buffer, bucket.dimension)
            self.persist(thumbnail, thumb_path, tags)
            outcome.written.append(bucket)
            buffer = thumbnail

        if outcome.written:
            LOGGER.info(
                "thumbnails_generated",
                extra={
                    "hash_id": hash_id,
                    "path": str(source.host_path),
                    "written": [bucket.dirname for bucket in outcome.written],
                    "cached": [bucket.dirname for bucket in outcome.cached],
                },
            )
        return outcome

    def generate_one(self, source: SourceMedia, image: Image.Image, bucket: ThumbnailBucket) -> Path:
        """Return the path of a fresh preview for ``bucket``, generating it if needed.

        When a fresh fail marker exists its path is returned instead.
        """

        hash_id = self.hash_for(source)
        if self.has_fresh_fail_marker(hash_id, source):
            return self.fail_marker_path(hash_id)

        thumb_path = self.thumbnail_path(hash_id, bucket)
        if thumb_path.exists() and is_thumbnail_up_to_date(thumb_path, source.sandbox_path):
            return thumb_path

        thumbnail = build_thumbnail_image(to_rgba(image), bucket.dimension)
        self.persist(thumbnail, thumb_path, self.source_tags(source, image))
        return thumb_path


__all__ = ["CachedArtifact", "CascadeOutcome", "ThumbnailStore"]
