"""Tests for cache keys derived from source URIs."""

from __future__ import annotations

import hashlib
import os
import subprocess
import sys
from pathlib import Path

import pytest

from thumbforge.errors import EncodingError
from thumbforge.hasher import canonical_uri, compute_path_hash, compute_uri_hash


def test_canonical_uri_percent_encodes_spaces_and_unicode() -> None:
    """Spaces and non-ASCII characters are percent-encoded as UTF-8."""

    assert canonical_uri("/home/user/My Photos/a b.jpg") == "file:///home/user/My%20Photos/a%20b.jpg"
    assert canonical_uri(Path("/tmp/café.png")) == "file:///tmp/caf%C3%A9.png"


def test_canonical_uri_keeps_sub_delimiters() -> None:
    """RFC 3986 sub-delimiters and slashes stay unescaped."""

    assert canonical_uri("/photos/a+b,c(1).jpg") == "file:///photos/a+b,c(1).jpg"
    assert canonical_uri("/photos/100%.jpg") == "file:///photos/100%25.jpg"


def test_canonical_uri_makes_relative_paths_absolute(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Relative paths are made absolute before encoding."""

    monkeypatch.chdir(tmp_path)

    uri = canonical_uri("shot.png")

    assert uri == canonical_uri(tmp_path / "shot.png")
    assert uri.startswith("file:///")


def test_canonical_uri_rejects_undecodable_paths() -> None:
    """Paths that are not valid UTF-8 raise EncodingError."""

    with pytest.raises(EncodingError):
        canonical_uri("/tmp/\udcff.png")


def test_md5_hash_matches_freedesktop_convention() -> None:
    """The default key is the MD5 hex digest of the file URI."""

    uri = "file:///home/jens/photos/me.png"

    assert compute_uri_hash(uri) == hashlib.md5(uri.encode("utf-8")).hexdigest()


def test_hash_is_stable_across_calls_and_algorithms() -> None:
    """Repeated hashing of the same path gives the same key for each algorithm."""

    path = "/srv/library/2024/IMG_0001.JPG"

    assert compute_path_hash(path) == compute_path_hash(path)
    assert len(compute_path_hash(path)) == 32
    assert compute_path_hash(path, "xxhash64") == compute_path_hash(path, "xxhash64")
    assert len(compute_path_hash(path, "xxhash64")) == 16
    assert compute_path_hash(path) != compute_path_hash("/srv/library/2024/IMG_0002.JPG")


def test_hash_is_stable_across_processes() -> None:
    """A fresh interpreter derives the same key for the same path."""

    path = "/srv/library/2024/IMG_0001.JPG"
    src_dir = Path(__file__).resolve().parents[1] / "src"
    env = {**os.environ, "PYTHONPATH": os.pathsep.join([str(src_dir), os.environ.get("PYTHONPATH", "")])}

    result = subprocess.run(
        [sys.executable, "-c", f"from thumbforge.hasher import compute_path_hash; print(compute_path_hash({path!r}))"],
        capture_output=True,
        text=True,
        env=env,
        check=True,
    )

    assert result.stdout.strip() == compute_path_hash(path)


def test_unknown_hash_algorithm_is_rejected() -> None:
    """Unsupported algorithm names raise ValueError."""

    with pytest.raises(ValueError):
        compute_uri_hash("file:///x.png", "sha1")
