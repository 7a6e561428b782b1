"""Face crops derived from detections on the largest cached preview."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from PIL import Image

from thumbforge.buckets import LARGEST_BUCKET, ThumbnailBucket
from thumbforge.errors import CacheFormatError
from thumbforge.media import SourceMedia
from thumbforge.metadata import TAG_FACE_CONFIDENCE, TAG_FACE_INDEX, TAG_FACE_MODEL
from thumbforge.ml.detection import (
    BoundingBox,
    FaceDetectionEnsemble,
    Point,
    RawDetection,
    non_max_suppression,
)
from thumbforge.store import ThumbnailStore
from thumbforge.thumbnailing import build_thumbnail_image
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "faces"})

DEFAULT_SQUARE_SCALE = 1.6
DEFAULT_FACE_THUMBNAIL_SIZE = 64
DEFAULT_NMS_IOU_THRESHOLD = 0.3


@dataclass(frozen=True)
class SquareCrop:
    """Square region in pixel coordinates."""

    x: float
    y: float
    side: float

    def to_box(self, image_width: int, image_height: int) -> Tuple[int, int, int, int]:
        """Return an integer ``(left, top, right, bottom)`` box inside the image, at least 1px wide."""

        left = min(max(0, int(self.x)), image_width - 1)
        top = min(max(0, int(self.y)), image_height - 1)
        side = max(1, int(self.side))
        side = min(side, image_width - left, image_height - top)
        return left, top, left + side, top + side


@dataclass(frozen=True)
class Face:
    """A detected face and the crops written for it."""

    index: int
    bounds: BoundingBox
    thumbnail_path: Path
    bounds_path: Path
    confidence: float
    backend: str
    landmarks: Tuple[Point, ...] | None = None


def face_centre(detection: RawDetection) -> Point:
    """Midpoint between the eyes when five landmarks exist, else the box centroid."""

    right_eye = detection.right_eye
    left_eye = detection.left_eye
    if right_eye is not None and left_eye is not None:
        return (right_eye[0] + left_eye[0]) / 2.0, (right_eye[1] + left_eye[1]) / 2.0

    bbox = detection.bbox
    return bbox.x + bbox.width / 2.0, bbox.y + bbox.height / 2.0


def square_crop(
    detection: RawDetection,
    image_width: int,
    image_height: int,
    scale: float = DEFAULT_SQUARE_SCALE,
) -> SquareCrop:
    """Square around the head, shrunk until it fits inside the image.

    The side starts at ``scale`` times the longest box edge. Half the side is
    then limited by the distance from the centre to the right, bottom, left
    and top edges, in that order. A centre outside the image is first moved
    onto its border.
    """

    centre_x, centre_y = face_centre(detection)
    centre_x = min(max(centre_x, 0.0), float(image_width))
    centre_y = min(max(centre_y, 0.0), float(image_height))

    side = scale * max(detection.bbox.width, detection.bbox.height)
    half_side = max(0.0, side / 2.0)

    if image_width - centre_x < half_side:
        half_side = image_width - centre_x
    if image_height - centre_y < half_side:
        half_side = image_height - centre_y
    if centre_x < half_side:
        half_side = centre_x
    if centre_y < half_side:
        half_side = centre_y

    side = half_side * 2.0
    x = max(0.0, centre_x - half_side)
    y = max(0.0, centre_y - half_side)
    return SquareCrop(x=x, y=y, side=side)


def bounds_box(bbox: BoundingBox, image_width: int, image_height: int) -> Tuple[int, int, int, int]:
    """Integer crop box for ``bbox`` clipped to the image, at least 1px in each direction."""

    left = min(max(0, int(math.floor(bbox.x))), image_width - 1)
    top = min(max(0, int(math.floor(bbox.y))), image_height - 1)
    right = max(left + 1, min(image_width, int(math.ceil(bbox.x_max))))
    bottom = max(top + 1, min(image_height, int(math.ceil(bbox.y_max))))
    return left, top, right, bottom


class FaceExtractor:
    """Detect faces on a source's largest preview and write the face crops.

    Crops are named ``{hash}_{index}.png`` where ``index`` is the position of
    the face in the suppressed detection list. Bounds crops go under
    ``{faces_root}/faces`` and square thumbnails under
    ``{faces_root}/face_thumbnails/small``.
    """

    def __init__(
        self,
        store: ThumbnailStore,
        ensemble: FaceDetectionEnsemble,
        faces_root: Path,
        *,
        iou_threshold: float = DEFAULT_NMS_IOU_THRESHOLD,
        thumbnail_size: int = DEFAULT_FACE_THUMBNAIL_SIZE,
        square_scale: float = DEFAULT_SQUARE_SCALE,
        preview_bucket: ThumbnailBucket = LARGEST_BUCKET,
    ) -> None:
        self._store = store
        self._ensemble = ensemble
        self._faces_dir = Path(faces_root) / "faces"
        self._thumbnails_dir = Path(faces_root) / "face_thumbnails" / "small"
        self._iou_threshold = iou_threshold
        self._thumbnail_size = thumbnail_size
        self._square_scale = square_scale
        self._preview_bucket = preview_bucket

    def bounds_path(self, hash_id: str, index: int) -> Path:
        return self._faces_dir / f"{hash_id}_{index}.png"

    def thumbnail_path(self, hash_id: str, index: int) -> Path:
        return self._thumbnails_dir / f"{hash_id}_{index}.png"

    def extract_faces(self, source: SourceMedia) -> List[Face]:
        """Identify faces in ``source`` and persist a bounds crop and a thumbnail for each.

        The preview for the configured bucket must already be cached.

        Raises:
            CacheFormatError: if the preview is missing or stale.
            OSError: if the preview cannot be read or a crop cannot be written.
        """

        hash_id = self._store.hash_for(source)
        artifact = self._store.lookup(hash_id, self._preview_bucket, source)
        if artifact is None:
            raise CacheFormatError(
                f"No fresh {self._preview_bucket.dirname} preview for {source.host_path}; generate thumbnails first"
            )

        with Image.open(artifact.path) as opened:
            preview = opened.convert("RGBA")

        raw = self._ensemble.detect(preview)
        detections = non_max_suppression(raw, self._iou_threshold)
        LOGGER.info(
            "faces_detected",
            extra={"path": str(source.host_path), "raw_count": len(raw), "face_count": len(detections)},
        )

        return [self._write_face(source, hash_id, index, detection, preview) for index, detection in enumerate(detections)]

    def _write_face(
        self,
        source: SourceMedia,
        hash_id: str,
        index: int,
        detection: RawDetection,
        preview: Image.Image,
    ) -> Face:
        width, height = preview.size
        tags = self._store.source_tags(
            source,
            extra={
                TAG_FACE_INDEX: index,
                TAG_FACE_CONFIDENCE: f"{detection.confidence:.4f}",
                TAG_FACE_MODEL: detection.backend,
            },
        )

        square = square_crop(detection, width, height, self._square_scale)
        head = preview.crop(square.to_box(width, height))
        thumbnail = build_thumbnail_image(head, self._thumbnail_size)
        thumbnail_path = self.thumbnail_path(hash_id, index)
        self._store.persist(thumbnail, thumbnail_path, tags)

        bounds_img = preview.crop(bounds_box(detection.bbox, width, height))
        bounds_path = self.bounds_path(hash_id, index)
        self._store.persist(bounds_img, bounds_path, tags)

        return Face(
            index=index,
            bounds=detection.bbox,
            thumbnail_path=thumbnail_path,
            bounds_path=bounds_path,
            confidence=detection.confidence,
            backend=detection.backend,
            landmarks=detection.landmarks,
        )


__all__ = [
    "Face",
    "FaceExtractor",
    "SquareCrop",
    "bounds_box",
    "face_centre",
    "square_crop",
]
