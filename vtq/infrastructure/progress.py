import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional
from vtq.domain.events import (
    JobAdmitted, JobStageChanged, JobCompleted, JobFailed, FileSkipped,
)
from vtq.domain.models import EventPointer, ProgressSnapshot
from vtq.infrastructure.event_bus import EventBus

class ProgressReporter:
    """Keeps an aggregate status document current for external observers.

    Subscribes to job events and rewrites the whole snapshot atomically after
    each one. Purely observational: write failures are logged and swallowed,
    and nothing in the pipeline reads the snapshot back.
    """

    def __init__(self, path: Path, event_bus: EventBus):
        self.path = Path(path)
        self.snapshot = ProgressSnapshot()
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)
        self._event_bus = event_bus
        self._handlers = {
            JobAdmitted: self._on_admitted,
            JobStageChanged: self._on_stage,
            JobCompleted: self._on_completed,
            JobFailed: self._on_failed,
            FileSkipped: self._on_skipped,
        }
        for event_type, handler in self._handlers.items():
            event_bus.subscribe(event_type, handler)

    def close(self):
        """Stops listening; the last written snapshot stays on disk."""
        for event_type, handler in self._handlers.items():
            self._event_bus.unsubscribe(event_type, handler)

    def _set_current(self, path: str, stage: str):
        self.snapshot.current_file = path
        self.snapshot.current_stage = stage
        self.snapshot.active[path] = stage

    def _clear_active(self, path: str):
        self.snapshot.active.pop(path, None)
        if self.snapshot.current_file == path:
            self.snapshot.current_file = None
            self.snapshot.current_stage = None

    def _on_admitted(self, event: JobAdmitted):
        with self._lock:
            self._set_current(str(event.path), "Queued")
            self._flush()

    def _on_stage(self, event: JobStageChanged):
        with self._lock:
            self._set_current(str(event.path), event.status.value)
            self._flush()

    def _on_completed(self, event: JobCompleted):
        with self._lock:
            path = str(event.path)
            self._clear_active(path)
            self.snapshot.encoded += 1
            self.snapshot.last_completed = EventPointer(path=path, reason=str(event.output_path), at=datetime.now())
            self._flush()

    def _on_failed(self, event: JobFailed):
        with self._lock:
            path = str(event.path)
            self._clear_active(path)
            self.snapshot.failed += 1
            self.snapshot.last_failed = EventPointer(path=path, reason=event.error_message, at=datetime.now())
            self._flush()

    def _on_skipped(self, event: FileSkipped):
        with self._lock:
            self.snapshot.skipped += 1
            self.snapshot.last_skipped = EventPointer(path=str(event.path), reason=event.reason, at=datetime.now())
            self._flush()

    def _flush(self):
        self.snapshot.updated_at = datetime.now()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(f"{self.path.name}.tmp")
            tmp.write_text(self.snapshot.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            self.logger.warning(f"Progress snapshot write failed ({self.path}): {exc}")

def load_snapshot(path: Path) -> Optional[ProgressSnapshot]:
    """Reads a snapshot for display; None when absent or unreadable."""
    try:
        return ProgressSnapshot.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))
    except (OSError, ValueError):
        return None
