"""Concrete face detector backends and their construction from settings.

Backends are built once per process by whoever owns the pipeline and then
passed by reference; nothing here keeps module-level model state.
"""

from __future__ import annotations

import os
import platform
from typing import Any, List

import numpy as np
import torch
from facenet_pytorch import MTCNN as _FacenetMTCNN
from PIL import Image
from torch import device as TorchDevice

from thumbforge.config import FaceBackendConfig, Settings, load_settings
from thumbforge.errors import DetectorError, ModelUnavailableError
from thumbforge.ml.detection import BoundingBox, FaceDetectionEnsemble, FaceDetector, RawDetection
from thumbforge.ml.model_presets import (
    DEFAULT_MTCNN_STAGE_THRESHOLDS,
    MTCNN,
    RETINAFACE,
    RETINAFACE_MODEL_PACKS,
)
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "face_models"})


def _select_device(config_device: str = "auto") -> TorchDevice:
    """Select a torch device based on configuration, preferring CPU-safe fallbacks.

    - ``auto``: CUDA, then MPS, then CPU.
    - Explicit values (``cuda``, ``mps``, ``cpu``): use when available, otherwise fall back to CPU.
    """

    normalized = (config_device or "auto").lower()
    mps_available = getattr(torch.backends, "mps", None) is not None and torch.backends.mps.is_available()

    if normalized == "auto":
        if torch.cuda.is_available():
            return torch.device("cuda")
        if mps_available:
            return torch.device("mps")
        return torch.device("cpu")

    if normalized == "cuda" and torch.cuda.is_available():
        return torch.device("cuda")
    if normalized == "mps" and mps_available:
        return torch.device("mps")

    return torch.device("cpu")


def _onnx_providers(config_device: str) -> list[str]:
    """Choose ONNX Runtime providers for InsightFace models."""

    normalized = (config_device or "auto").lower()
    if normalized in ("auto", "cuda") and torch.cuda.is_available():
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    if normalized in ("auto", "mps") and platform.system() == "Darwin" and platform.machine().lower() in {"arm64", "aarch64"}:
        return ["CoreMLExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def _to_points(raw: Any) -> tuple[tuple[float, float], ...] | None:
    if raw is None:
        return None
    points = np.asarray(raw, dtype=np.float32).reshape(-1, 2)
    if points.shape[0] != 5:
        return None
    return tuple((float(x), float(y)) for x, y in points)


class MtcnnFaceDetector:
    """MTCNN cascade from facenet-pytorch."""

    def __init__(self, config: FaceBackendConfig, device: TorchDevice) -> None:
        self.name = config.name
        self._score_threshold = float(config.score_threshold)
        try:
            self._mtcnn = _FacenetMTCNN(
                keep_all=True,
                min_face_size=int(config.min_face_size),
                thresholds=list(DEFAULT_MTCNN_STAGE_THRESHOLDS),
                device=device,
            )
        except (OSError, RuntimeError) as exc:
            raise ModelUnavailableError(f"Unable to load MTCNN weights for {config.name!r}: {exc}") from exc

        LOGGER.info(
            "mtcnn_detector_init",
            extra={
                "backend": self.name,
                "device": str(device),
                "score_threshold": self._score_threshold,
                "min_face_size": int(config.min_face_size),
            },
        )

    def detect(self, image: Image.Image) -> List[RawDetection]:
        """Run MTCNN on ``image`` and return detections above the score threshold."""

        rgb = image.convert("RGB")
        try:
            with torch.no_grad():
                boxes, probs, points = self._mtcnn.detect(rgb, landmarks=True)
        except (RuntimeError, ValueError) as exc:
            raise DetectorError(f"MTCNN failed: {exc}") from exc

        if boxes is None:
            return []

        detections: List[RawDetection] = []
        for box, prob, landmarks in zip(boxes, probs, points):
            if prob is None or float(prob) < self._score_threshold:
                continue
            x_min, y_min, x_max, y_max = (float(v) for v in box)
            detections.append(
                RawDetection(
                    bbox=BoundingBox.from_corners(x_min, y_min, x_max, y_max),
                    confidence=float(prob),
                    backend=self.name,
                    landmarks=_to_points(landmarks),
                )
            )
        return detections


class RetinaFaceDetector:
    """RetinaFace detection head from an InsightFace model pack."""

    def __init__(self, config: FaceBackendConfig) -> None:
        os.environ.setdefault("OMP_NUM_THREADS", "2")
        try:
            from insightface.app import FaceAnalysis
        except ImportError as exc:  # pragma: no cover - import guard
            raise ModelUnavailableError(
                "insightface is required for the retinaface backend. Install it via `pip install insightface`."
            ) from exc

        pack = RETINAFACE_MODEL_PACKS.get(config.model_pack)
        if pack is None:
            raise ModelUnavailableError(f"Unsupported InsightFace model pack: {config.model_pack!r}")

        self.name = config.name
        self._score_threshold = float(config.score_threshold)
        providers = _onnx_providers(config.device)
        size = int(config.target_size)
        try:
            self._app = FaceAnalysis(name=pack, allowed_modules=["detection"], providers=providers)
            self._app.prepare(ctx_id=0, det_size=(size, size), det_thresh=self._score_threshold)
        except (OSError, RuntimeError, AssertionError) as exc:
            raise ModelUnavailableError(f"Unable to load RetinaFace model {pack!r}: {exc}") from exc

        LOGGER.info(
            "retinaface_detector_init",
            extra={
                "backend": self.name,
                "model_pack": pack,
                "providers": providers,
                "target_size": size,
                "score_threshold": self._score_threshold,
            },
        )

    def detect(self, image: Image.Image) -> List[RawDetection]:
        """Run RetinaFace on ``image`` and return detections above the score threshold."""

        # InsightFace expects BGR channel order.
        bgr = np.ascontiguousarray(np.asarray(image.convert("RGB"))[:, :, ::-1])
        try:
            faces = self._app.get(bgr)
        except (RuntimeError, ValueError) as exc:
            raise DetectorError(f"RetinaFace failed: {exc}") from exc

        detections: List[RawDetection] = []
        for face in faces:
            score = float(face.det_score)
            if score < self._score_threshold:
                continue
            x_min, y_min, x_max, y_max = (float(v) for v in face.bbox)
            detections.append(
                RawDetection(
                    bbox=BoundingBox.from_corners(x_min, y_min, x_max, y_max),
                    confidence=score,
                    backend=self.name,
                    landmarks=_to_points(getattr(face, "kps", None)),
                )
            )
        return detections


def build_face_detector(config: FaceBackendConfig) -> FaceDetector:
    """Construct one backend from its configuration.

    Raises:
        ModelUnavailableError: if the model cannot be loaded.
        ValueError: if the backend kind is unknown.
    """

    if config.kind == MTCNN:
        return MtcnnFaceDetector(config, _select_device(config.device))
    if config.kind == RETINAFACE:
        return RetinaFaceDetector(config)
    raise ValueError(f"Unsupported face detector kind: {config.kind!r}")


def build_face_ensemble(settings: Settings | None = None) -> FaceDetectionEnsemble:
    """Create the face detection ensemble configured in application settings."""

    resolved_settings = settings or load_settings()
    cfg = resolved_settings.faces

    if not cfg.enabled:
        raise RuntimeError("Face detection is disabled in settings (faces.enabled is False).")

    detectors = [build_face_detector(backend) for backend in cfg.backends]
    LOGGER.info("face_ensemble_ready", extra={"backends": [detector.name for detector in detectors]})
    return FaceDetectionEnsemble(detectors)


__all__ = [
    "MtcnnFaceDetector",
    "RetinaFaceDetector",
    "build_face_detector",
    "build_face_ensemble",
]
