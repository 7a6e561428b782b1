"""Named preview sizes, following the freedesktop.org thumbnail directories."""

from __future__ import annotations

from enum import Enum


class ThumbnailBucket(Enum):
    """Target longest-edge size of a cached preview, with its directory name."""

    NORMAL = ("normal", 128)
    LARGE = ("large", 256)
    XLARGE = ("x-large", 512)
    XXLARGE = ("xx-large", 1024)

    def __init__(self, dirname: str, dimension: int) -> None:
        self.dirname = dirname
        self.dimension = dimension

    @classmethod
    def from_name(cls, name: str) -> "ThumbnailBucket":
        """Resolve a bucket by enum name or directory name, case-insensitively."""

        text = str(name).strip().lower()
        for bucket in cls:
            if text in (bucket.name.lower(), bucket.dirname):
                return bucket
        raise ValueError(f"Unknown thumbnail bucket: {name!r}")


def largest_first(buckets: list[ThumbnailBucket] | None = None) -> list[ThumbnailBucket]:
    """Return unique buckets ordered from largest to smallest dimension."""

    selected = set(buckets) if buckets is not None else set(ThumbnailBucket)
    return sorted(selected, key=lambda bucket: bucket.dimension, reverse=True)


LARGEST_BUCKET: ThumbnailBucket = ThumbnailBucket.XXLARGE


__all__ = ["LARGEST_BUCKET", "ThumbnailBucket", "largest_first"]
