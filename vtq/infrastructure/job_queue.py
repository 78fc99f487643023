"""Durable per-file job queue.

The whole entry set is one JSON document rewritten on every mutation
(temp file, fsync, os.replace), so a reader never sees a partial write, even
after a crash. Every operation re-reads the document while holding an
exclusive advisory lock on a sidecar ``.lock`` file, which makes
read-modify-write atomic across processes sharing the same store.
"""

import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union
from pydantic import ValidationError
from vtq.config.models import QueueConfig
from vtq.domain.errors import InvalidTransitionError, QueueStateError
from vtq.domain.models import QueueEntry, QueueStatus, STATUS_ORDER

try:
    import fcntl
except ImportError:  # Windows: in-process lock only
    fcntl = None

QUEUE_DOC_VERSION = 1

PathLike = Union[str, Path]

class DurableJobQueue:
    """Path-keyed queue of QueueEntry records persisted as a JSON document."""

    def __init__(
        self,
        state_path: Path,
        config: Optional[QueueConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.state_path = Path(state_path)
        self.lock_path = self.state_path.with_name(f"{self.state_path.name}.lock")
        self.config = config or QueueConfig()
        self._clock = clock
        self._mutex = threading.Lock()
        self.logger = logging.getLogger(__name__)
        self.state_path.parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _key(path: PathLike) -> str:
        return str(Path(path).absolute())

    @contextmanager
    def _locked(self) -> Iterator[Dict[str, QueueEntry]]:
        """Yields the current entries under the process and file locks."""
        with self._mutex:
            with open(self.lock_path, "a+") as lock_file:
                if fcntl is not None:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield self._load()
                finally:
                    if fcntl is not None:
                        fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load(self) -> Dict[str, QueueEntry]:
        try:
            raw = self.state_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            self.logger.error(f"Queue state {self.state_path} is unreadable, starting empty: {exc}")
            return {}

        if not isinstance(data, dict):
            self.logger.error(f"Queue state {self.state_path} is not an object, starting empty")
            return {}
        if "version" in data:
            if data["version"] != QUEUE_DOC_VERSION:
                raise QueueStateError(f"Unsupported queue document version {data['version']} in {self.state_path}")
            raw_entries = data.get("entries") or {}
        else:
            # Unversioned documents are a bare path -> entry map
            raw_entries = data

        entries: Dict[str, QueueEntry] = {}
        for key, value in raw_entries.items():
            try:
                entries[key] = QueueEntry.model_validate(value)
            except ValidationError as exc:
                self.logger.warning(f"Dropping malformed queue entry {key}: {exc}")
        return entries

    def _save(self, entries: Dict[str, QueueEntry]):
        doc = {
            "version": QUEUE_DOC_VERSION,
            "entries": {key: entry.model_dump(mode="json") for key, entry in sorted(entries.items())},
        }
        tmp_path = self.state_path.with_name(f"{self.state_path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.state_path)

    def _cooldown(self) -> timedelta:
        return timedelta(hours=self.config.terminal_cooldown_h)

    def _stale_window(self, status: QueueStatus) -> timedelta:
        if status.is_terminal:
            return self._cooldown()
        if status == QueueStatus.ENCODING:
            return timedelta(hours=self.config.encoding_stale_h)
        return timedelta(hours=self.config.active_stale_h)

    def blocks_admission(self, entry: Optional[QueueEntry], now: Optional[datetime] = None) -> bool:
        """True while entry is non-terminal or a terminal entry inside its cool-down."""
        if entry is None:
            return False
        if not entry.status.is_terminal:
            return True
        now = now or self._clock()
        return now - entry.updated_at < self._cooldown()

    def try_enqueue(self, path: PathLike) -> bool:
        """Creates a Queued entry unless the path is active or cooling down."""
        key = self._key(path)
        now = self._clock()
        with self._locked() as entries:
            if self.blocks_admission(entries.get(key), now):
                return False
            entries[key] = QueueEntry(status=QueueStatus.QUEUED, added_at=now, updated_at=now)
            self._save(entries)
        return True

    def update_status(self, path: PathLike, status: QueueStatus, details: str = ""):
        key = self._key(path)
        now = self._clock()
        with self._locked() as entries:
            existing = entries.get(key)
            if existing is None:
                self.logger.warning(f"update_status on unknown entry {key}; creating it as {status.value}")
                entries[key] = QueueEntry(status=status, added_at=now, updated_at=now, details=details)
            else:
                self._check_transition(key, existing.status, status)
                existing.status = status
                existing.updated_at = now
                existing.details = details
            self._save(entries)

    @staticmethod
    def _check_transition(key: str, current: QueueStatus, new: QueueStatus):
        if current.is_terminal:
            raise InvalidTransitionError(f"{key}: cannot leave terminal state {current.value} for {new.value}")
        if new == QueueStatus.FAILED:
            return
        if STATUS_ORDER[new] < STATUS_ORDER[current]:
            raise InvalidTransitionError(f"{key}: cannot move back from {current.value} to {new.value}")

    def remove(self, path: PathLike) -> bool:
        key = self._key(path)
        with self._locked() as entries:
            if key not in entries:
                return False
            del entries[key]
            self._save(entries)
        return True

    def reclaim_stale(self) -> List[str]:
        """Drops expired terminal entries and active entries stuck past their window.

        Liveness of whatever process owned an active entry is not checked.
        """
        now = self._clock()
        removed: List[str] = []
        with self._locked() as entries:
            for key, entry in list(entries.items()):
                age = now - entry.updated_at
                if age > self._stale_window(entry.status):
                    removed.append(key)
                    del entries[key]
                    if entry.status.is_terminal:
                        self.logger.debug(f"RECLAIM: {key} ({entry.status.value} cool-down expired)")
                    else:
                        self.logger.warning(
                            f"RECLAIM: {key} stuck in {entry.status.value} for {age}; entry removed"
                        )
            if removed:
                self._save(entries)
        return removed

    def get(self, path: PathLike) -> Optional[QueueEntry]:
        with self._locked() as entries:
            return entries.get(self._key(path))

    def entries(self) -> Dict[str, QueueEntry]:
        with self._locked() as entries:
            return dict(entries)
