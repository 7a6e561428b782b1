from __future__ import annotations

import os
import struct
import zlib
from pathlib import Path
from typing import Callable, List

import pytest
from PIL import Image

from thumbforge.media import SourceMedia
from thumbforge.ml.detection import BoundingBox, RawDetection
from thumbforge.store import ThumbnailStore


class FakeDetector:
    """Detector backend returning canned detections."""

    def __init__(self, name: str, detections: List[RawDetection] | None = None) -> None:
        self.name = name
        self._detections = list(detections or [])
        self.calls = 0

    def detect(self, image: Image.Image) -> List[RawDetection]:
        self.calls += 1
        return list(self._detections)


class FailingDetector:
    """Detector backend that always raises."""

    def __init__(self, name: str = "broken", error: Exception | None = None) -> None:
        self.name = name
        self._error = error or RuntimeError("model exploded")

    def detect(self, image: Image.Image) -> List[RawDetection]:
        raise self._error


def make_detection(
    x: float,
    y: float,
    width: float,
    height: float,
    confidence: float = 0.9,
    backend: str = "fake",
    landmarks=None,
) -> RawDetection:
    return RawDetection(
        bbox=BoundingBox(x=x, y=y, width=width, height=height),
        confidence=confidence,
        backend=backend,
        landmarks=landmarks,
    )


def write_source_image(path: Path, size: tuple[int, int] = (2000, 1500), mtime: int = 1_000_000) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    image = Image.new("RGB", size, color=(200, 120, 40))
    image.paste((30, 60, 90), (0, 0, size[0] // 2, size[1] // 2))
    image.save(path, format="JPEG", quality=90)
    os.utime(path, (mtime, mtime))
    return path


def write_oversized_png(path: Path, tags: dict[str, str]) -> Path:
    """Write a tiny PNG whose header claims 100000x100000 pixels."""

    def _chunk(kind: bytes, data: bytes) -> bytes:
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)

    header = struct.pack(">IIBBBBB", 100_000, 100_000, 8, 6, 0, 0, 0)
    text = b"".join(
        _chunk(b"tEXt", key.encode("latin-1") + b"\x00" + value.encode("latin-1")) for key, value in tags.items()
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + _chunk(b"IHDR", header) + text + _chunk(b"IEND", b""))
    return path


@pytest.fixture
def thumbnails_root(tmp_path: Path) -> Path:
    return tmp_path / "thumbnails"


@pytest.fixture
def store(thumbnails_root: Path) -> ThumbnailStore:
    return ThumbnailStore(thumbnails_root, software="thumbforge-tests")


@pytest.fixture
def source_factory(tmp_path: Path) -> Callable[..., SourceMedia]:
    def _factory(name: str = "photo.jpg", size: tuple[int, int] = (2000, 1500), mtime: int = 1_000_000) -> SourceMedia:
        path = write_source_image(tmp_path / "album" / name, size=size, mtime=mtime)
        return SourceMedia.from_path(path)

    return _factory
