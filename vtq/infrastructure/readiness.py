import logging
import os
import time
from typing import Callable, Optional
from vtq.domain.models import MediaFile

try:
    import fcntl
except ImportError:  # Windows: the open() check alone applies
    fcntl = None

class ReadinessGate:
    """Decides whether a discovered file is finished being written.

    Checks run cheapest first: age since last write, then a shared-read open,
    then a size comparison across a short wait. A file that fails any check is
    simply skipped for this cycle; nothing is recorded.
    """

    def __init__(
        self,
        min_age_s: float,
        stability_wait_s: float,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_age_s = min_age_s
        self.stability_wait_s = stability_wait_s
        self._clock = clock
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

    def not_ready_reason(self, media_file: MediaFile) -> Optional[str]:
        path = media_file.path
        age = self._clock() - media_file.mtime
        if age < self.min_age_s:
            return f"modified {age:.0f}s ago (< {self.min_age_s:.0f}s)"

        try:
            with open(path, "rb") as f:
                if fcntl is not None:
                    try:
                        fcntl.flock(f.fileno(), fcntl.LOCK_SH | fcntl.LOCK_NB)
                    except OSError:
                        return "locked by a writer"
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError as exc:
            return f"cannot open for read: {exc}"

        try:
            size_before = os.stat(path).st_size
            if self.stability_wait_s > 0:
                self._sleep(self.stability_wait_s)
            size_after = os.stat(path).st_size
        except OSError as exc:
            return f"stat failed: {exc}"
        if size_before != size_after or size_after != media_file.size_bytes:
            return f"size changing ({media_file.size_bytes} -> {size_after})"
        return None

    def check(self, media_file: MediaFile) -> bool:
        reason = self.not_ready_reason(media_file)
        if reason:
            self.logger.debug(f"NOT_READY: {media_file.path.name} {reason}")
            return False
        return True
