"""Face detector backend kinds and their default parameters."""

from __future__ import annotations

MTCNN: str = "mtcnn"
RETINAFACE: str = "retinaface"

SUPPORTED_BACKEND_KINDS: frozenset[str] = frozenset({MTCNN, RETINAFACE})

# InsightFace model packs that ship a RetinaFace detection head.
RETINAFACE_MODEL_PACKS: dict[str, str] = {
    "buffalo_l": "buffalo_l",
    "buffalo_s": "buffalo_s",
    "buffalo_sc": "buffalo_sc",
}

DEFAULT_RETINAFACE_MODEL_PACK: str = "buffalo_l"

# Per-stage P/R/O-net thresholds used by facenet-pytorch.
DEFAULT_MTCNN_STAGE_THRESHOLDS: tuple[float, float, float] = (0.6, 0.7, 0.7)


__all__ = [
    "DEFAULT_MTCNN_STAGE_THRESHOLDS",
    "DEFAULT_RETINAFACE_MODEL_PACK",
    "MTCNN",
    "RETINAFACE",
    "RETINAFACE_MODEL_PACKS",
    "SUPPORTED_BACKEND_KINDS",
]
