"""CLI entrypoint that generates previews and face crops for album roots.

Detector models are built once here and shared by every worker thread.
"""

from __future__ import annotations

import signal
import threading
from pathlib import Path

import typer

from thumbforge.config import Settings, load_settings
from thumbforge.media import scan_roots
from thumbforge.ml.detection import FaceDetectionEnsemble
from thumbforge.pipeline import FileOutcome, ThumbforgePipeline
from utils.logging import get_logger

LOGGER = get_logger(__name__)


def _apply_cli_overrides(
    settings: Settings,
    faces: bool | None,
    workers: int | None,
    device: str | None,
) -> Settings:
    """Apply CLI overrides for face detection, worker count and device to the settings."""

    if faces is not None:
        settings.faces.enabled = faces

    if workers is not None and workers > 0:
        settings.workers.max_workers = workers

    if device:
        for backend in settings.faces.backends:
            backend.device = device

    return settings


def _build_ensemble(settings: Settings) -> FaceDetectionEnsemble | None:
    if not settings.faces.enabled:
        return None

    from thumbforge.ml.models import build_face_ensemble

    return build_face_ensemble(settings)


def main(
    root: list[Path] = typer.Option(
        ...,
        "--root",
        file_okay=False,
        dir_okay=True,
        exists=True,
        readable=True,
        help="Album root directory to scan. May be specified multiple times.",
    ),
    settings_path: Path | None = typer.Option(
        None,
        "--settings",
        dir_okay=False,
        help="Settings YAML file. Defaults to THUMBFORGE_SETTINGS or config/settings.yaml.",
    ),
    faces: bool | None = typer.Option(
        None,
        "--faces/--no-faces",
        help="Run face detection after thumbnailing. Defaults to faces.enabled in settings.yaml.",
    ),
    workers: int | None = typer.Option(
        None,
        "--workers",
        help="Number of files processed in parallel.",
    ),
    device: str | None = typer.Option(
        None,
        "--device",
        help="Override the detector device from settings.yaml, for example cpu, cuda, or mps.",
    ),
) -> None:
    """Generate cached thumbnails (and face crops) for every image under the roots."""

    settings = load_settings(settings_path)
    settings = _apply_cli_overrides(settings, faces=faces, workers=workers, device=device)

    ensemble = _build_ensemble(settings)
    pipeline = ThumbforgePipeline(settings=settings, ensemble=ensemble)

    stop = threading.Event()

    def _request_stop(_signum: int, _frame: object) -> None:
        LOGGER.warning("stop_requested")
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)

    sources = list(scan_roots(root))
    done = 0
    lock = threading.Lock()

    def _progress(outcome: FileOutcome) -> None:
        nonlocal done
        with lock:
            done += 1
            position = done
        if outcome.status == "failed":
            typer.echo(f"[{position}/{len(sources)}] failed {outcome.source.host_path}: {outcome.error}", err=True)

    report = pipeline.run(sources, stop=stop, on_progress=_progress)

    typer.echo(
        f"processed={report.count('processed')} failed={report.count('failed')} "
        f"skipped={report.count('fail_marker')} cancelled={report.count('cancelled')} faces={report.face_count}"
    )


def run() -> None:
    typer.run(main)


if __name__ == "__main__":
    run()


__all__ = ["main", "run"]
