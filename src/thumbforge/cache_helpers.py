"""Locating the directories artifacts are written under."""

from __future__ import annotations

import os
from pathlib import Path


def xdg_cache_home() -> Path:
    """Return ``$XDG_CACHE_HOME``, falling back to ``~/.cache``.

    Relative values are ignored, as the XDG base directory rules require.
    """

    raw = os.getenv("XDG_CACHE_HOME", "").strip()
    if raw and Path(raw).is_absolute():
        return Path(raw)
    return Path.home() / ".cache"


def resolve_cache_root(target: str | Path) -> Path:
    """Expand and absolutize a configured cache root.

    Raises:
        ValueError: for empty values, URLs, or a path naming a PNG artifact
            rather than a directory.
    """

    text = str(target).strip()
    if not text:
        raise ValueError("cache root cannot be empty")
    if "://" in text:
        raise ValueError(f"cache root must be a local directory, got URL {text!r}")

    root = Path(text).expanduser().resolve()
    if root.suffix.lower() == ".png":
        raise ValueError(f"cache root must be a directory, not an artifact path: {root}")
    return root


__all__ = ["resolve_cache_root", "xdg_cache_home"]
