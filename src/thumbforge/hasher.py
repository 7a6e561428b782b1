"""Content-addressing keys for cached artifacts.

Artifacts are keyed by a digest of the source's canonical ``file://`` URI, as
described by the freedesktop.org thumbnail managing standard. The default MD5
key makes previews shareable with other desktop software; ``xxhash64`` is
available for private caches that do not need to interoperate.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Final
from urllib.parse import quote

import xxhash

from thumbforge.errors import EncodingError

MD5_ALGO: Final[str] = "md5"
XXHASH64_ALGO: Final[str] = "xxhash64"
SUPPORTED_HASH_ALGOS: Final[frozenset[str]] = frozenset({MD5_ALGO, XXHASH64_ALGO})

# Sub-delimiters left unescaped by GLib's g_filename_to_uri.
_URI_SAFE_CHARS: Final[str] = "/!$&'()*+,;=:@"


def canonical_uri(host_path: Path | str) -> str:
    """Build the percent-encoded ``file://`` URI for a source path.

    Relative paths are made absolute against the current directory; symlinks
    are not resolved, since the host path may not exist inside a sandbox.

    Raises:
        EncodingError: if the path contains bytes that are not valid UTF-8.
    """

    absolute = os.path.abspath(os.fspath(host_path))
    try:
        encoded = absolute.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise EncodingError(f"Path is not representable as UTF-8 text: {absolute!r}") from exc

    return "file://" + quote(encoded, safe=_URI_SAFE_CHARS)


def compute_uri_hash(uri: str, algo: str = MD5_ALGO) -> str:
    """Return the lowercase hexadecimal cache key for a canonical URI.

    Args:
        uri: Canonical URI as produced by :func:`canonical_uri`.
        algo: ``"md5"`` (32 hex characters) or ``"xxhash64"`` (16 hex characters).
    """

    data = uri.encode("utf-8")
    if algo == MD5_ALGO:
        return hashlib.md5(data, usedforsecurity=False).hexdigest()
    if algo == XXHASH64_ALGO:
        return f"{xxhash.xxh64(data).intdigest():016x}"
    raise ValueError(f"Unsupported hash algorithm: {algo!r}")


def compute_path_hash(host_path: Path | str, algo: str = MD5_ALGO) -> str:
    """Shorthand for ``compute_uri_hash(canonical_uri(host_path), algo)``."""

    return compute_uri_hash(canonical_uri(host_path), algo)


__all__ = [
    "MD5_ALGO",
    "SUPPORTED_HASH_ALGOS",
    "XXHASH64_ALGO",
    "canonical_uri",
    "compute_path_hash",
    "compute_uri_hash",
]
