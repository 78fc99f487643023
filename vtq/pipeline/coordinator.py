"""Pipeline coordinator for the download → transcode → upload lifecycle.

One coordinating loop per process. Each cycle reclaims stale queue entries,
reconciles in-flight work, backfills transcode slots from finished downloads
and backfills the download buffer from discovery. Downloads run on a small
thread pool and transcodes as ffmpeg children; both are only ever polled, so
the end-of-cycle wait is the single suspension point.

Key responsibilities:
- Admit files through Scanner → ReadinessGate → CodecClassifier → try_enqueue
- Bound the download buffer and transcode slots with explicit SlotPool tokens
- Drive each queue entry Queued → Downloading → Encoding → Uploading → Completed
- Convert every per-file error into a Failed entry and a log line
- Publish transition events for the progress reporter
"""

import hashlib
import logging
import threading
import concurrent.futures
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, Dict, Iterator, Optional
from vtq.config.models import AppConfig
from vtq.domain.errors import VtqError, TranscodeFailure, UploadFailure, ProbeFailure
from vtq.domain.events import (
    CycleFinished, FileSkipped, JobAdmitted, JobCompleted, JobFailed, JobReclaimed, JobStageChanged,
)
from vtq.domain.models import MediaFile, PipelineJob, QueueEntry, QueueStatus
from vtq.infrastructure.event_bus import EventBus
from vtq.infrastructure.ffmpeg import FFmpegAdapter, partial_path
from vtq.infrastructure.ffprobe import FFprobeAdapter
from vtq.infrastructure.file_scanner import FileScanner
from vtq.infrastructure.job_queue import DurableJobQueue
from vtq.infrastructure.readiness import ReadinessGate
from vtq.infrastructure.transfer import TransferService
from vtq.pipeline.classifier import CodecClassifier
from vtq.pipeline.slots import SlotPool
from vtq.pipeline.stream_selection import select_streams


class Coordinator:
    """Bounded-concurrency driver for the transcode pipeline.

    Args:
        config: AppConfig with general, paths, encoder, streams and queue settings.
        event_bus: EventBus for publishing job lifecycle events.
        queue: DurableJobQueue, authoritative for admission.
        file_scanner: FileScanner for discovering candidates under watch roots.
        readiness_gate: ReadinessGate that rejects files still being written.
        classifier: CodecClassifier for codec/bitrate triage.
        transfer: TransferService for download, upload and deletes.
        ffprobe_adapter: FFprobeAdapter for track listings of local copies.
        ffmpeg_adapter: FFmpegAdapter that spawns and judges transcodes.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        queue: DurableJobQueue,
        file_scanner: FileScanner,
        readiness_gate: ReadinessGate,
        classifier: CodecClassifier,
        transfer: TransferService,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
    ):
        self.config = config
        self.event_bus = event_bus
        self.queue = queue
        self.file_scanner = file_scanner
        self.readiness_gate = readiness_gate
        self.classifier = classifier
        self.transfer = transfer
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.logger = logging.getLogger(__name__)

        self.watch_roots = [Path(p).absolute() for p in config.paths.watch_roots]
        self.download_dir = Path(config.paths.download_dir)
        self.encode_dir = Path(config.paths.encode_dir)
        self.destination_root = Path(config.paths.destination_root)

        self.download_slots = SlotPool("download_buffer", config.general.download_buffer)
        self.transcode_slots = SlotPool("transcode_slots", config.general.transcode_slots)
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=config.general.download_workers,
            thread_name_prefix="vtq-download",
        )

        self._jobs: Dict[str, PipelineJob] = {}  # key -> job being advanced
        self._buffered: Deque[str] = deque()  # downloaded, waiting for a transcode slot

    # ------------------------------------------------------------------
    # Job planning
    # ------------------------------------------------------------------

    @staticmethod
    def _key(path: Path) -> str:
        return str(Path(path).absolute())

    def _destination_for(self, media: MediaFile) -> Path:
        """destination_root/<category>/<path below the category dir>."""
        parts = media.relative_path.parts
        if len(parts) > 1 and parts[0].lower() in self.config.paths.category_dirs:
            parts = parts[1:]
        rel = Path(*parts).with_suffix(self.config.encoder.output_extension)
        return self.destination_root / media.category / rel

    def _plan_job(self, media: MediaFile) -> PipelineJob:
        # Prefix keeps staging names unique across watch roots and subfolders
        digest = hashlib.sha1(self._key(media.path).encode("utf-8")).hexdigest()[:8]
        ext = self.config.encoder.output_extension
        return PipelineJob(
            source=media,
            download_path=self.download_dir / f"{digest}_{media.path.name}",
            encode_path=self.encode_dir / f"{digest}_{media.path.stem}{ext}",
            destination_path=self._destination_for(media),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, job: PipelineJob, status: QueueStatus, details: str = ""):
        self.queue.update_status(job.source.path, status, details)
        job.status = status
        self.logger.info(f"STAGE: {job.source.path.name} -> {status.value}")
        self.event_bus.publish(JobStageChanged(path=job.source.path, status=status, details=details))

    def _release_slots(self, job: PipelineJob):
        if job.download_token is not None:
            job.download_token.release()
        if job.transcode_token is not None:
            job.transcode_token.release()

    def _forget(self, job: PipelineJob):
        self._release_slots(job)
        self._jobs.pop(job.key, None)
        try:
            self._buffered.remove(job.key)
        except ValueError:
            pass

    def _remove_local(self, job: PipelineJob, keep_encode: bool = False):
        self.transfer.remove(job.download_path)
        self.transfer.remove(partial_path(job.download_path))
        self.transfer.remove(partial_path(job.encode_path))
        if not keep_encode:
            self.transfer.remove(job.encode_path)

    def _fail(self, job: PipelineJob, message: str, keep_encode: bool = False):
        stage = job.status
        self.logger.error(f"FAILED: {job.source.path.name} during {stage.value}: {message}")
        if job.transcode is not None:
            job.transcode.terminate()
        if job.download_future is not None:
            job.download_future.cancel()
        self._remove_local(job, keep_encode=keep_encode)
        try:
            self.queue.update_status(job.source.path, QueueStatus.FAILED, message)
        except (VtqError, OSError) as exc:
            self.logger.error(f"Could not record failure for {job.source.path}: {exc}")
        job.status = QueueStatus.FAILED
        self._forget(job)
        self.event_bus.publish(JobFailed(path=job.source.path, error_message=message, stage=stage))

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    def _reconcile(self):
        for job in list(self._jobs.values()):
            try:
                if job.status == QueueStatus.DOWNLOADING and job.download_future is not None:
                    if job.download_future.done():
                        self._on_download_done(job)
                elif job.status == QueueStatus.ENCODING and job.transcode is not None:
                    if job.transcode.finished():
                        self._on_transcode_done(job)
            except VtqError as exc:
                self._fail(job, str(exc))
            except Exception as exc:
                self.logger.exception(f"Unexpected error advancing {job.source.path.name}")
                self._fail(job, f"Exception: {exc}")

    def _on_download_done(self, job: PipelineJob):
        future, job.download_future = job.download_future, None
        future.result()  # re-raises the download error
        self._buffered.append(job.key)

    def _on_transcode_done(self, job: PipelineJob):
        outcome = self.ffmpeg_adapter.interpret(job.transcode)
        job.transcode = None
        if not outcome.success:
            raise TranscodeFailure(outcome.message)
        details = "exit code not 0; accepted by size/runtime check" if outcome.rescued else ""
        self._transition(job, QueueStatus.UPLOADING, details)
        self._upload(job)

    def _upload(self, job: PipelineJob):
        try:
            self.transfer.upload(job.encode_path, job.destination_path)
        except UploadFailure as exc:
            self._fail(job, str(exc), keep_encode=True)
            return

        details = str(job.destination_path)
        if not self.transfer.remove(job.source.path):
            details = f"{details} (source not deleted)"
        self._remove_local(job)
        self.queue.update_status(job.source.path, QueueStatus.COMPLETED, details)
        job.status = QueueStatus.COMPLETED
        self._forget(job)
        # Completed sources are not triaged again
        self.classifier.forget(job.source)
        elapsed = (datetime.now() - job.started_at).total_seconds()
        self.logger.info(f"COMPLETED: {job.source.path.name} -> {job.destination_path} ({elapsed:.0f}s)")
        self.event_bus.publish(JobCompleted(path=job.source.path, output_path=job.destination_path))

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    def _backfill_transcodes(self):
        while self._buffered:
            token = self.transcode_slots.try_acquire()
            if token is None:
                return
            job = self._jobs.get(self._buffered.popleft())
            if job is None:
                token.release()
                continue
            job.transcode_token = token
            try:
                self._start_transcode(job)
            except (VtqError, OSError) as exc:
                self._fail(job, str(exc))
            except Exception as exc:
                self.logger.exception(f"Unexpected error starting transcode for {job.source.path.name}")
                self._fail(job, f"Exception: {exc}")

    def _start_transcode(self, job: PipelineJob):
        self._transition(job, QueueStatus.ENCODING)
        # The copy has left the download buffer
        if job.download_token is not None:
            job.download_token.release()
            job.download_token = None
        try:
            streams = self.ffprobe_adapter.list_streams(job.download_path)
        except ProbeFailure as exc:
            self.logger.warning(f"Track listing failed for {job.download_path.name}, using default map: {exc}")
            streams = None
        stream_map = select_streams(job.source.path, streams, self.config.streams)
        job.transcode = self.ffmpeg_adapter.start(job.download_path, job.encode_path, stream_map)

    def _discover(self, known: Dict[str, QueueEntry]) -> Iterator[MediaFile]:
        """Yields admissible candidates lazily; consumers stop when the buffer is full."""
        for root in self.watch_roots:
            if not self._root_reachable(root):
                self.logger.warning(f"Watch root unreachable: {root}; retrying next cycle")
                continue
            for media in self.file_scanner.scan(root):
                key = self._key(media.path)
                if key in self._jobs:
                    continue
                # Cheap pre-filter on a snapshot; try_enqueue stays authoritative
                if self.queue.blocks_admission(known.get(key)):
                    continue
                cached = self.classifier.cached(media)
                if cached is not None and cached.is_skip:
                    continue
                yield media

    @staticmethod
    def _root_reachable(root: Path) -> bool:
        try:
            return root.is_dir()
        except OSError:
            return False

    def _admit(self, media: MediaFile) -> bool:
        if not self.readiness_gate.check(media):
            return False
        result = self.classifier.classify(media)
        if result is None:
            return False
        if result.is_skip:
            self.event_bus.publish(FileSkipped(
                path=media.path, codec=result.codec, size_bytes=media.size_bytes, reason=result.reason
            ))
            return False
        if not self.queue.try_enqueue(media.path):
            self.logger.debug(f"ADMIT_REFUSED: {media.path.name} already queued or cooling down")
            return False
        self.logger.info(
            f"ADMIT: {media.path.name} codec={result.codec} bitrate={result.bitrate_kbps:.0f}kbps "
            f"category={media.category}"
        )
        return True

    def _backfill_downloads(self) -> int:
        if self.download_slots.available <= 0:
            return 0
        admitted = 0
        known = self.queue.entries()
        for media in self._discover(known):
            token = self.download_slots.try_acquire()
            if token is None:
                break
            try:
                is_admitted = self._admit(media)
            except Exception:
                token.release()
                self.logger.exception(f"Admission failed for {media.path.name}")
                continue
            if not is_admitted:
                token.release()
                continue

            job = self._plan_job(media)
            job.download_token = token
            self._jobs[job.key] = job
            admitted += 1
            self.event_bus.publish(JobAdmitted(path=media.path, category=media.category))
            try:
                self._transition(job, QueueStatus.DOWNLOADING)
                job.download_future = self._executor.submit(
                    self.transfer.download, media.path, job.download_path
                )
            except (VtqError, OSError) as exc:
                self._fail(job, str(exc))
        return admitted

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def counts(self) -> Dict[str, int]:
        downloading = sum(1 for j in self._jobs.values() if j.download_future is not None)
        encoding = sum(1 for j in self._jobs.values() if j.transcode is not None)
        return {"downloading": downloading, "buffered": len(self._buffered), "encoding": encoding}

    @property
    def in_flight(self) -> int:
        return len(self._jobs)

    def run_cycle(self) -> int:
        """Runs one reclaim → reconcile → backfill pass; returns files admitted."""
        try:
            for key in self.queue.reclaim_stale():
                self.event_bus.publish(JobReclaimed(path=Path(key)))
        except (VtqError, OSError) as exc:
            self.logger.error(f"Stale reclaim failed: {exc}")

        self._reconcile()
        self._backfill_transcodes()
        try:
            admitted = self._backfill_downloads()
        except (VtqError, OSError) as exc:
            self.logger.error(f"Discovery failed: {exc}")
            admitted = 0

        self.event_bus.publish(CycleFinished(**self.counts()))
        return admitted

    def run(self, stop_event: Optional[threading.Event] = None, until_idle: bool = False):
        """Polls until stop_event is set (or, with until_idle, nothing is left to do)."""
        stop_event = stop_event or threading.Event()
        interval = self.config.general.poll_interval_s
        self.logger.info(
            f"Coordinator started: roots={len(self.watch_roots)}, "
            f"download_buffer={self.download_slots.capacity}, transcode_slots={self.transcode_slots.capacity}"
        )
        try:
            while not stop_event.is_set():
                admitted = self.run_cycle()
                if until_idle and admitted == 0 and not self._jobs:
                    self.logger.info("Nothing left to process, exiting")
                    break
                # Short waits while work is in flight keep --once responsive
                wait = min(interval, 1.0) if until_idle and self._jobs else interval
                stop_event.wait(wait)
        finally:
            self.shutdown()

    def shutdown(self):
        """Stops in-flight work and drops its entries so the next start re-admits them."""
        jobs = list(self._jobs.values())
        if jobs:
            self.logger.info(f"Shutdown: interrupting {len(jobs)} in-flight jobs")
        for job in jobs:
            if job.transcode is not None:
                job.transcode.terminate()
            if job.download_future is not None:
                job.download_future.cancel()
        self._executor.shutdown(wait=True, cancel_futures=True)
        for job in jobs:
            self._remove_local(job)
            try:
                self.queue.remove(job.source.path)
            except (VtqError, OSError) as exc:
                self.logger.error(f"Could not drop entry for {job.source.path}: {exc}")
            self._forget(job)
        self.logger.info("Shutdown complete")
