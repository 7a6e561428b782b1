"""Tests for face crop geometry and the face extractor."""

from __future__ import annotations

import random
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from conftest import FailingDetector, FakeDetector, make_detection
from thumbforge.buckets import ThumbnailBucket
from thumbforge.errors import CacheFormatError
from thumbforge.faces import FaceExtractor, bounds_box, face_centre, square_crop
from thumbforge.media import SourceMedia
from thumbforge.metadata import read_metadata
from thumbforge.ml.detection import FaceDetectionEnsemble
from thumbforge.store import ThumbnailStore

EYES = ((110.0, 115.0), (130.0, 115.0), (120.0, 125.0), (112.0, 132.0), (128.0, 132.0))


def test_centre_uses_eye_midpoint_when_landmarks_present() -> None:
    """With landmarks the face centre is the midpoint between the eyes."""

    detection = make_detection(100, 100, 40, 50, landmarks=EYES)

    assert face_centre(detection) == (120.0, 115.0)


def test_centre_falls_back_to_box_centroid() -> None:
    """Without a full landmark set the centre is the box centroid."""

    assert face_centre(make_detection(100, 100, 40, 50)) == (120.0, 125.0)
    assert face_centre(make_detection(100, 100, 40, 50, landmarks=EYES[:3])) == (120.0, 125.0)


def test_square_crop_expands_longest_edge() -> None:
    """The square side is 1.6 times the longest box edge when it fits."""

    crop = square_crop(make_detection(100, 100, 50, 40), 1000, 1000)

    assert crop.side == pytest.approx(80.0)
    assert crop.x == pytest.approx(85.0)
    assert crop.y == pytest.approx(80.0)


def test_square_crop_shrinks_at_right_edge() -> None:
    """A face near the right edge gets a smaller square that stays inside the image."""

    crop = square_crop(make_detection(175, 50, 20, 20), 200, 200)

    assert crop.side == pytest.approx(30.0)
    assert crop.x == pytest.approx(170.0)
    assert crop.y == pytest.approx(45.0)


def test_square_crop_shrinks_at_top_left_corner() -> None:
    """A face in the corner is clamped against the top and left edges."""

    crop = square_crop(make_detection(0, 0, 20, 20), 200, 200)

    assert crop.x == pytest.approx(0.0)
    assert crop.y == pytest.approx(0.0)
    assert crop.side == pytest.approx(20.0)


def test_square_crop_stays_inside_image() -> None:
    """Random detections always produce a square contained in the image."""

    rng = random.Random(20240601)
    tolerance = 1e-6

    for _ in range(2000):
        width = rng.randint(1, 600)
        height = rng.randint(1, 600)
        x = rng.uniform(-50, width + 50)
        y = rng.uniform(-50, height + 50)
        landmarks = None
        if rng.random() < 0.5:
            landmarks = tuple((rng.uniform(-20, width + 20), rng.uniform(-20, height + 20)) for _ in range(5))
        detection = make_detection(x, y, rng.uniform(0, 300), rng.uniform(0, 300), landmarks=landmarks)

        crop = square_crop(detection, width, height)

        assert crop.x >= 0.0
        assert crop.y >= 0.0
        assert crop.side >= 0.0
        assert crop.x + crop.side <= width + tolerance
        assert crop.y + crop.side <= height + tolerance

        left, top, right, bottom = crop.to_box(width, height)
        assert 0 <= left < right <= width
        assert 0 <= top < bottom <= height
        assert right - left == bottom - top


def test_bounds_box_is_clipped_to_image() -> None:
    """Bounds crops are rounded outwards and clipped to the image."""

    detection = make_detection(-5.5, 10.2, 50, 300)

    assert bounds_box(detection.bbox, 100, 200) == (0, 10, 45, 200)


def _prepare(store: ThumbnailStore, source: SourceMedia) -> None:
    with Image.open(source.sandbox_path) as image:
        store.generate(source, image.convert("RGBA"))


def test_extractor_writes_crops_per_deduplicated_face(
    store: ThumbnailStore,
    source_factory: Callable[..., SourceMedia],
    tmp_path: Path,
) -> None:
    """Each suppressed face gets a tagged bounds crop and square thumbnail."""

    source = source_factory()
    _prepare(store, source)
    # Coordinates are relative to the 1024x768 preview.
    first = make_detection(100, 100, 120, 160, confidence=0.7, backend="mtcnn")
    duplicate = make_detection(105, 98, 120, 160, confidence=0.95, backend="retinaface_640")
    second = make_detection(600, 300, 80, 80, confidence=0.85, backend="mtcnn")
    ensemble = FaceDetectionEnsemble(
        [
            FakeDetector("mtcnn", [first, second]),
            FailingDetector("broken"),
            FakeDetector("retinaface_640", [duplicate]),
        ]
    )
    extractor = FaceExtractor(store, ensemble, tmp_path / "faces_root")

    faces = extractor.extract_faces(source)

    hash_id = store.hash_for(source)
    assert [face.index for face in faces] == [0, 1]
    assert faces[0].confidence == pytest.approx(0.95)
    assert faces[0].backend == "retinaface_640"
    assert faces[1].bounds == second.bbox
    assert faces[0].bounds_path == tmp_path / "faces_root" / "faces" / f"{hash_id}_0.png"
    assert faces[1].thumbnail_path == tmp_path / "faces_root" / "face_thumbnails" / "small" / f"{hash_id}_1.png"

    with Image.open(faces[0].bounds_path) as bounds_img:
        assert bounds_img.size == (120, 160)
    with Image.open(faces[0].thumbnail_path) as thumb:
        assert thumb.size == (64, 64)

    tags = read_metadata(faces[1].thumbnail_path)
    assert tags["Face::Index"] == "1"
    assert tags["Face::Model"] == "mtcnn"
    assert tags["Thumb::MTime"] == str(source.mtime)


def test_extractor_with_no_faces_writes_nothing(
    store: ThumbnailStore,
    source_factory: Callable[..., SourceMedia],
    tmp_path: Path,
) -> None:
    """No detections means no face artifacts on disk."""

    source = source_factory()
    _prepare(store, source)
    extractor = FaceExtractor(store, FaceDetectionEnsemble([FailingDetector()]), tmp_path / "faces_root")

    assert extractor.extract_faces(source) == []
    assert not (tmp_path / "faces_root" / "faces").exists()


def test_extractor_requires_fresh_preview(
    store: ThumbnailStore,
    source_factory: Callable[..., SourceMedia],
    tmp_path: Path,
) -> None:
    """Extraction refuses to run without a cached preview."""

    source = source_factory()
    extractor = FaceExtractor(
        store,
        FaceDetectionEnsemble([FakeDetector("fake")]),
        tmp_path / "faces_root",
        preview_bucket=ThumbnailBucket.XLARGE,
    )

    with pytest.raises(CacheFormatError):
        extractor.extract_faces(source)
