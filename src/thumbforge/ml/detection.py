"""Face detection results, duplicate suppression and the detector ensemble."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Sequence, Tuple

from PIL import Image

from utils.logging import get_logger


LOGGER = get_logger(__name__, extra={"component": "detection"})

Point = Tuple[float, float]


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in pixel coordinates of the image it was detected on."""

    x: float
    y: float
    width: float
    height: float

    @property
    def x_max(self) -> float:
        return self.x + self.width

    @property
    def y_max(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @classmethod
    def from_corners(cls, x_min: float, y_min: float, x_max: float, y_max: float) -> "BoundingBox":
        return cls(x=x_min, y=y_min, width=x_max - x_min, height=y_max - y_min)


@dataclass(frozen=True)
class RawDetection:
    """Single face reported by one detector backend.

    Landmarks, when present, are five points: right eye, left eye, nose,
    right mouth corner, left mouth corner. Left and right are from the
    subject's point of view.
    """

    bbox: BoundingBox
    confidence: float
    backend: str
    landmarks: Tuple[Point, ...] | None = None

    def landmark(self, index: int) -> Point | None:
        if self.landmarks is None or len(self.landmarks) != 5:
            return None
        return self.landmarks[index]

    @property
    def right_eye(self) -> Point | None:
        return self.landmark(0)

    @property
    def left_eye(self) -> Point | None:
        return self.landmark(1)

    @property
    def nose(self) -> Point | None:
        return self.landmark(2)

    @property
    def right_mouth_corner(self) -> Point | None:
        return self.landmark(3)

    @property
    def left_mouth_corner(self) -> Point | None:
        return self.landmark(4)


class FaceDetector(Protocol):
    """Given an image, produce face detections or raise."""

    name: str

    def detect(self, image: Image.Image) -> List[RawDetection]:
        """Run detection on a single image."""


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Compute intersection-over-union (IoU) for two bounding boxes."""

    inter_x1 = max(a.x, b.x)
    inter_y1 = max(a.y, b.y)
    inter_x2 = min(a.x_max, b.x_max)
    inter_y2 = min(a.y_max, b.y_max)

    inter_w = max(0.0, inter_x2 - inter_x1)
    inter_h = max(0.0, inter_y2 - inter_y1)
    inter_area = inter_w * inter_h
    if inter_area <= 0.0:
        return 0.0

    union = a.area + b.area - inter_area
    if union <= 0.0:
        return 0.0

    return inter_area / union


def non_max_suppression(detections: Sequence[RawDetection], iou_threshold: float) -> List[RawDetection]:
    """Collapse overlapping detections into one per physical face.

    Detections whose IoU is above ``iou_threshold`` belong to the same group,
    transitively. Each group is represented by its most confident detection,
    the earliest one on ties. Representatives are returned in input order.
    """

    count = len(detections)
    if count == 0:
        return []

    parent = list(range(count))

    def _find(index: int) -> int:
        while parent[index] != index:
            parent[index] = parent[parent[index]]
            index = parent[index]
        return index

    for i in range(count):
        for j in range(i + 1, count):
            if iou(detections[i].bbox, detections[j].bbox) > iou_threshold:
                root_i, root_j = _find(i), _find(j)
                if root_i != root_j:
                    parent[max(root_i, root_j)] = min(root_i, root_j)

    best: dict[int, int] = {}
    for index in range(count):
        root = _find(index)
        current = best.get(root)
        if current is None or detections[index].confidence > detections[current].confidence:
            best[root] = index

    return [detections[index] for index in sorted(best.values())]


class FaceDetectionEnsemble:
    """Run several independently configured detectors over the same image.

    Detectors are constructed once by the caller and are expected to be
    stateless afterwards, so one ensemble can be shared between worker threads.
    """

    def __init__(self, detectors: Sequence[FaceDetector]) -> None:
        self._detectors = list(detectors)

    @property
    def detector_names(self) -> List[str]:
        return [detector.name for detector in self._detectors]

    def detect(self, image: Image.Image) -> List[RawDetection]:
        """Return the concatenated detections of every backend that succeeded."""

        detections: List[RawDetection] = []
        for detector in self._detectors:
            try:
                found = detector.detect(image)
            except Exception as exc:
                LOGGER.error(
                    "face_detector_failed",
                    extra={"backend": detector.name, "error": str(exc), "error_type": type(exc).__name__},
                )
                continue

            LOGGER.debug("face_detector_result", extra={"backend": detector.name, "count": len(found)})
            detections.extend(found)

        return detections


__all__ = [
    "BoundingBox",
    "FaceDetectionEnsemble",
    "FaceDetector",
    "Point",
    "RawDetection",
    "iou",
    "non_max_suppression",
]
