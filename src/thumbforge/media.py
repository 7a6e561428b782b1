"""Source media snapshots and the filesystem scanner that produces them."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_MEDIA_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".jpg",
        ".jpeg",
        ".png",
        ".heic",
        ".webp",
        ".gif",
        ".tif",
        ".tiff",
    }
)


@dataclass(frozen=True)
class SourceMedia:
    """Immutable snapshot of a source file taken when the pipeline starts.

    ``host_path`` is the path as the rest of the desktop sees it and is what
    the cache key is derived from. ``sandbox_path`` is where this process can
    actually read the file; outside a sandbox the two are the same.
    """

    host_path: Path
    sandbox_path: Path
    mtime: int
    size_bytes: int

    @classmethod
    def from_path(cls, host_path: Path | str, sandbox_path: Path | str | None = None) -> "SourceMedia":
        """Stat ``sandbox_path`` (or ``host_path``) and capture the snapshot.

        Raises:
            OSError: if the file cannot be stat'ed.
        """

        host = Path(host_path)
        sandbox = Path(sandbox_path) if sandbox_path is not None else host
        stat = sandbox.stat()
        return cls(host_path=host, sandbox_path=sandbox, mtime=int(stat.st_mtime), size_bytes=stat.st_size)


def scan_roots(roots: Sequence[Path], extensions: frozenset[str] | None = None) -> Iterator[SourceMedia]:
    """Recursively scan album roots and yield source media snapshots.

    Args:
        roots: Album root directories to scan.
        extensions: Allowed file extensions, lowercased and including the leading dot.
            When omitted, :data:`DEFAULT_MEDIA_EXTENSIONS` is used.

    Yields:
        SourceMedia instances for each discovered file that matches the extension filter.
    """

    allowed = extensions or DEFAULT_MEDIA_EXTENSIONS

    for root in roots:
        if not root.exists() or not root.is_dir():
            LOGGER.warning("scan_root_missing", extra={"root": str(root)})
            continue

        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue

            if path.suffix.lower() not in allowed:
                continue

            try:
                yield SourceMedia.from_path(path.absolute())
            except OSError as exc:
                LOGGER.warning("scan_stat_failed", extra={"path": str(path), "error": str(exc)})


__all__ = ["DEFAULT_MEDIA_EXTENSIONS", "SourceMedia", "scan_roots"]
