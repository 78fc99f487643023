import logging
import threading
from datetime import datetime
from pathlib import Path

class SkipAuditLog:
    """Append-only record of files triage decided not to re-encode."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def append(self, path: Path, codec: str, size_bytes: int, reason: str):
        line = f"{datetime.now().isoformat(timespec='seconds')}\t{codec}\t{size_bytes}\t{reason}\t{path}\n"
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
        self.logger.info(f"SKIP: {path.name} codec={codec} reason={reason}")
