"""Configuration loader and typed settings for thumbforge."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from thumbforge.buckets import ThumbnailBucket, largest_first
from thumbforge.cache_helpers import resolve_cache_root, xdg_cache_home
from thumbforge.hasher import MD5_ALGO, SUPPORTED_HASH_ALGOS
from thumbforge.ml.model_presets import (
    DEFAULT_RETINAFACE_MODEL_PACK,
    MTCNN,
    RETINAFACE,
    SUPPORTED_BACKEND_KINDS,
)
from utils.logging import get_logger

LOGGER = get_logger(__name__)


def _default_thumbnails_root() -> Path:
    return xdg_cache_home() / "thumbnails"


def _default_faces_root() -> Path:
    return xdg_cache_home() / "thumbforge"


@dataclass
class CacheConfig:
    """Where artifacts live and how they are keyed."""

    thumbnails_root: Path = field(default_factory=_default_thumbnails_root)
    faces_root: Path = field(default_factory=_default_faces_root)
    software: str = "thumbforge"
    hash_algorithm: str = MD5_ALGO


@dataclass
class ThumbnailConfig:
    """Preview generation settings."""

    buckets: list[str] = field(default_factory=lambda: [bucket.name.lower() for bucket in ThumbnailBucket])
    record_failures: bool = True

    def resolved_buckets(self) -> list[ThumbnailBucket]:
        """Return the configured buckets, largest first.

        Raises:
            ValueError: if a bucket name is unknown.
        """

        return largest_first([ThumbnailBucket.from_name(name) for name in self.buckets])


@dataclass
class FaceBackendConfig:
    """One detector backend of the face detection ensemble.

    ``target_size`` is the square input size for RetinaFace. Smaller values
    favour large faces, larger values small ones. ``min_face_size`` applies to
    MTCNN only.
    """

    name: str
    kind: str
    score_threshold: float = 0.9
    target_size: int = 640
    min_face_size: int = 20
    device: str = "auto"
    model_pack: str = DEFAULT_RETINAFACE_MODEL_PACK


def _default_face_backends() -> list[FaceBackendConfig]:
    return [
        FaceBackendConfig(name="retinaface_640", kind=RETINAFACE, score_threshold=0.5, target_size=640),
        FaceBackendConfig(name="mtcnn", kind=MTCNN, score_threshold=0.9),
    ]


@dataclass
class FacesConfig:
    """Face detection and crop settings."""

    enabled: bool = True
    nms_iou_threshold: float = 0.3
    thumbnail_size: int = 64
    square_scale: float = 1.6
    backends: list[FaceBackendConfig] = field(default_factory=_default_face_backends)


@dataclass
class WorkerConfig:
    """Parallelism across source files."""

    max_workers: int = 4


@dataclass
class Settings:
    """Top-level application settings."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    thumbnails: ThumbnailConfig = field(default_factory=ThumbnailConfig)
    faces: FacesConfig = field(default_factory=FacesConfig)
    workers: WorkerConfig = field(default_factory=WorkerConfig)


def _project_root() -> Path:
    """Best-effort detection of the repository root for config discovery."""

    module_path = Path(__file__).resolve()
    try:
        return module_path.parents[2]
    except IndexError:  # pragma: no cover - defensive fallback
        return module_path.parent


def _build_default_settings_paths() -> list[Path]:
    """Return candidate settings paths ordered by preference."""

    cwd_candidate = (Path.cwd() / "config" / "settings.yaml").resolve()
    repo_candidate = (_project_root() / "config" / "settings.yaml").resolve()

    candidates: list[Path] = []
    seen: set[Path] = set()
    for candidate in (cwd_candidate, repo_candidate):
        if candidate in seen:
            continue
        seen.add(candidate)
        candidates.append(candidate)
    return candidates


def _resolve_settings_path(settings_path: Path | str | None) -> Path:
    """Determine which settings file to load, honoring overrides."""

    if settings_path:
        return Path(settings_path).expanduser().resolve()

    env_override = os.getenv("THUMBFORGE_SETTINGS")
    if env_override:
        return Path(env_override).expanduser().resolve()

    candidates = _build_default_settings_paths()
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_backend(raw: dict[str, Any]) -> FaceBackendConfig | None:
    name = raw.get("name")
    kind = raw.get("kind")
    if not isinstance(name, str) or not name.strip():
        LOGGER.warning("face_backend_config_missing_name", extra={"entry": raw})
        return None
    if not isinstance(kind, str) or kind not in SUPPORTED_BACKEND_KINDS:
        LOGGER.warning("face_backend_config_unknown_kind", extra={"backend_name": name, "kind": kind})
        return None

    backend = FaceBackendConfig(name=name.strip(), kind=kind)
    if _is_number(raw.get("score_threshold")):
        backend.score_threshold = float(raw["score_threshold"])
    if _is_int(raw.get("target_size")):
        backend.target_size = raw["target_size"]
    if _is_int(raw.get("min_face_size")):
        backend.min_face_size = raw["min_face_size"]
    if isinstance(raw.get("device"), str):
        backend.device = raw["device"]
    if isinstance(raw.get("model_pack"), str):
        backend.model_pack = raw["model_pack"]
    return backend


def load_settings(settings_path: Path | str | None = None) -> Settings:
    """Load application settings from a YAML file, falling back to defaults.

    The loader is deliberately defensive: if the file is missing or malformed,
    it returns a :class:`Settings` instance populated with default values, and
    individual keys of the wrong type are ignored.
    """

    path = _resolve_settings_path(settings_path)
    settings = Settings()

    if not path.exists() or not path.is_file():
        return settings

    try:
        with path.open("r", encoding="utf-8") as fp:
            raw: Any = yaml.safe_load(fp) or {}
    except yaml.YAMLError as exc:
        LOGGER.error("settings_parse_error", extra={"path": str(path), "error": str(exc)})
        return settings

    if not isinstance(raw, dict):
        return settings

    cache_raw = _as_dict(raw.get("cache"))
    cache_cfg = settings.cache
    for key in ("thumbnails_root", "faces_root"):
        if not isinstance(cache_raw.get(key), str):
            continue
        try:
            setattr(cache_cfg, key, resolve_cache_root(cache_raw[key]))
        except ValueError as exc:
            LOGGER.warning("settings_invalid_cache_root", extra={"key": key, "error": str(exc)})
    if isinstance(cache_raw.get("software"), str) and cache_raw["software"].strip():
        cache_cfg.software = cache_raw["software"].strip()
    if isinstance(cache_raw.get("hash_algorithm"), str):
        algo = cache_raw["hash_algorithm"].strip().lower()
        if algo in SUPPORTED_HASH_ALGOS:
            cache_cfg.hash_algorithm = algo
        else:
            LOGGER.warning("settings_unknown_hash_algorithm", extra={"hash_algorithm": algo})

    thumbnails_raw = _as_dict(raw.get("thumbnails"))
    thumbnails_cfg = settings.thumbnails
    if isinstance(thumbnails_raw.get("buckets"), list):
        names: list[str] = []
        for item in thumbnails_raw["buckets"]:
            try:
                ThumbnailBucket.from_name(str(item))
            except ValueError:
                LOGGER.warning("settings_unknown_bucket", extra={"bucket": str(item)})
                continue
            names.append(str(item).strip())
        thumbnails_cfg.buckets = names
    if isinstance(thumbnails_raw.get("record_failures"), bool):
        thumbnails_cfg.record_failures = thumbnails_raw["record_failures"]

    faces_raw = _as_dict(raw.get("faces"))
    faces_cfg = settings.faces
    if isinstance(faces_raw.get("enabled"), bool):
        faces_cfg.enabled = faces_raw["enabled"]
    if _is_number(faces_raw.get("nms_iou_threshold")):
        faces_cfg.nms_iou_threshold = float(faces_raw["nms_iou_threshold"])
    if _is_int(faces_raw.get("thumbnail_size")) and faces_raw["thumbnail_size"] > 0:
        faces_cfg.thumbnail_size = faces_raw["thumbnail_size"]
    if _is_number(faces_raw.get("square_scale")):
        faces_cfg.square_scale = float(faces_raw["square_scale"])
    if isinstance(faces_raw.get("backends"), list):
        parsed_backends = [
            backend
            for backend in (_parse_backend(entry) for entry in faces_raw["backends"] if isinstance(entry, dict))
            if backend is not None
        ]
        faces_cfg.backends = parsed_backends

    workers_raw = _as_dict(raw.get("workers"))
    if _is_int(workers_raw.get("max_workers")) and workers_raw["max_workers"] > 0:
        settings.workers.max_workers = workers_raw["max_workers"]

    return settings


__all__ = [
    "CacheConfig",
    "FaceBackendConfig",
    "FacesConfig",
    "Settings",
    "ThumbnailConfig",
    "WorkerConfig",
    "load_settings",
]
