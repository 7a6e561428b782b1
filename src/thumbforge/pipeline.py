"""Per-file derivative pipeline and the parallel batch runner.

One file runs sequentially: decode, cascade-resize into every bucket, then
(optionally) detect faces on the largest preview and write the face crops.
Files are fanned out over a thread pool. Workers share nothing but the
filesystem, whose writes are atomic renames.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Literal

from thumbforge.buckets import ThumbnailBucket
from thumbforge.config import Settings
from thumbforge.decoding import PillowDecoder, SourceDecoder
from thumbforge.errors import CacheFormatError, DecodeError, EncodingError
from thumbforge.faces import Face, FaceExtractor
from thumbforge.media import SourceMedia
from thumbforge.ml.detection import FaceDetectionEnsemble
from thumbforge.store import ThumbnailStore
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "pipeline"})

FileStatus = Literal["processed", "fail_marker", "failed", "cancelled"]


@dataclass
class FileOutcome:
    """Result of running the pipeline over one source file."""

    source: SourceMedia
    status: FileStatus
    written: list[ThumbnailBucket] = field(default_factory=list)
    cached: list[ThumbnailBucket] = field(default_factory=list)
    faces: list[Face] = field(default_factory=list)
    error: str | None = None


@dataclass
class BatchReport:
    """Aggregate of a batch run, in input order."""

    outcomes: list[FileOutcome] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def count(self, status: FileStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def face_count(self) -> int:
        return sum(len(outcome.faces) for outcome in self.outcomes)


class ThumbforgePipeline:
    """Generate cached previews and face crops for source files."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: ThumbnailStore | None = None,
        decoder: SourceDecoder | None = None,
        ensemble: FaceDetectionEnsemble | None = None,
    ) -> None:
        self._settings = settings
        self._store = store or ThumbnailStore(
            settings.cache.thumbnails_root,
            software=settings.cache.software,
            hash_algo=settings.cache.hash_algorithm,
        )
        self._decoder = decoder or PillowDecoder()
        self._buckets = settings.thumbnails.resolved_buckets()

        self._extractor: FaceExtractor | None = None
        if settings.faces.enabled and ensemble is not None and not self._buckets:
            LOGGER.warning("face_extraction_disabled_no_buckets")
        elif settings.faces.enabled and ensemble is not None:
            self._extractor = FaceExtractor(
                self._store,
                ensemble,
                settings.cache.faces_root,
                iou_threshold=settings.faces.nms_iou_threshold,
                thumbnail_size=settings.faces.thumbnail_size,
                square_scale=settings.faces.square_scale,
                preview_bucket=self._buckets[0],
            )

    @property
    def store(self) -> ThumbnailStore:
        return self._store

    def process_file(self, source: SourceMedia) -> FileOutcome:
        """Run the whole pipeline for one file; failures are reported, not raised."""

        try:
            if self._store.has_fresh_fail_marker(self._store.hash_for(source), source):
                LOGGER.info("fail_marker_fresh_skip", extra={"path": str(source.host_path)})
                return FileOutcome(source=source, status="fail_marker")

            image = self._decoder.decode(source.sandbox_path)
            cascade = self._store.generate(source, image, self._buckets)
        except EncodingError as exc:
            LOGGER.error("source_path_unencodable", extra={"path": str(source.host_path), "error": str(exc)})
            return FileOutcome(source=source, status="failed", error=str(exc))
        except (DecodeError, OSError) as exc:
            LOGGER.error(
                "thumbnail_generation_failed",
                extra={"path": str(source.host_path), "error": str(exc), "error_type": type(exc).__name__},
            )
            self._maybe_record_failure(source)
            return FileOutcome(source=source, status="failed", error=str(exc))
        except Exception as exc:
            LOGGER.error(
                "file_pipeline_error",
                extra={"path": str(source.host_path), "error": str(exc), "error_type": type(exc).__name__},
            )
            return FileOutcome(source=source, status="failed", error=str(exc))

        outcome = FileOutcome(source=source, status="processed", written=cascade.written, cached=cascade.cached)
        if cascade.fail_marker:
            outcome.status = "fail_marker"
            return outcome

        if self._extractor is not None:
            try:
                outcome.faces = self._extractor.extract_faces(source)
            except (CacheFormatError, OSError) as exc:
                LOGGER.error("face_extraction_failed", extra={"path": str(source.host_path), "error": str(exc)})
                outcome.status = "failed"
                outcome.error = str(exc)
            except Exception as exc:
                LOGGER.error(
                    "file_pipeline_error",
                    extra={"path": str(source.host_path), "error": str(exc), "error_type": type(exc).__name__},
                )
                outcome.status = "failed"
                outcome.error = str(exc)

        return outcome

    def _maybe_record_failure(self, source: SourceMedia) -> None:
        if not self._settings.thumbnails.record_failures:
            return
        try:
            self._store.record_failure_for(source)
        except OSError as exc:
            LOGGER.warning("fail_marker_write_failed", extra={"path": str(source.host_path), "error": str(exc)})

    def run(
        self,
        sources: Iterable[SourceMedia],
        *,
        stop: threading.Event | None = None,
        on_progress: Callable[[FileOutcome], None] | None = None,
    ) -> BatchReport:
        """Process ``sources`` in parallel and return one outcome per source.

        Setting ``stop`` prevents files that have not started yet from
        starting; files already in flight run to completion.
        """

        items = list(sources)
        report = BatchReport()
        if not items:
            return report

        stop_event = stop or threading.Event()
        start = time.monotonic()
        LOGGER.info("batch_start", extra={"count": len(items), "max_workers": self._settings.workers.max_workers})

        def _task(source: SourceMedia) -> FileOutcome:
            if stop_event.is_set():
                outcome = FileOutcome(source=source, status="cancelled")
            else:
                outcome = self.process_file(source)
            if on_progress is not None:
                on_progress(outcome)
            return outcome

        with ThreadPoolExecutor(max_workers=self._settings.workers.max_workers) as executor:
            report.outcomes = list(executor.map(_task, items))

        report.elapsed_seconds = time.monotonic() - start
        LOGGER.info(
            "batch_complete",
            extra={
                "count": len(items),
                "processed": report.count("processed"),
                "failed": report.count("failed"),
                "fail_marker": report.count("fail_marker"),
                "cancelled": report.count("cancelled"),
                "faces": report.face_count,
                "elapsed_seconds": round(report.elapsed_seconds, 3),
            },
        )
        return report


__all__ = ["BatchReport", "FileOutcome", "FileStatus", "ThumbforgePipeline"]
