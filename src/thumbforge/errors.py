"""Error taxonomy for thumbnail and face artifact generation.

I/O failures (open, read, write, rename) surface as the builtin ``OSError``.
"""

from __future__ import annotations


class ThumbforgeError(Exception):
    """Base class for errors raised by this package."""


class EncodingError(ThumbforgeError):
    """A source path cannot be represented as a ``file://`` URI."""


class DecodeError(ThumbforgeError):
    """A source image is corrupt or in an unsupported format."""


class DetectorError(ThumbforgeError):
    """A single face detector backend failed."""


class ModelUnavailableError(DetectorError):
    """A detector backend could not be constructed from its model."""


class CacheFormatError(ThumbforgeError):
    """A cached artifact is unreadable or lacks the expected metadata."""


__all__ = [
    "CacheFormatError",
    "DecodeError",
    "DetectorError",
    "EncodingError",
    "ModelUnavailableError",
    "ThumbforgeError",
]
