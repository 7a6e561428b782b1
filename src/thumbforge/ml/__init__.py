"""Face detection helpers for thumbforge."""

from .detection import (
    BoundingBox,
    FaceDetectionEnsemble,
    FaceDetector,
    RawDetection,
    iou,
    non_max_suppression,
)

__all__ = [
    "BoundingBox",
    "FaceDetectionEnsemble",
    "FaceDetector",
    "RawDetection",
    "iou",
    "non_max_suppression",
]
