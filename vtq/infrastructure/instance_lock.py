import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional
from vtq.domain.errors import FatalStartupError

try:
    import fcntl
except ImportError:
    fcntl = None

def lock_name_for_config(config_path: Path) -> str:
    """One coordinator per configuration file per host."""
    digest = hashlib.sha1(str(Path(config_path).resolve()).encode("utf-8")).hexdigest()[:12]
    return f"vtq-{digest}"

def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # exists, owned by someone else
    return True

class SingleInstanceGuard:
    """Host-wide exclusive lock held for the lifetime of a coordinator.

    Use as a context manager. Acquisition never blocks: if another live
    process holds the lock a FatalStartupError is raised. A lock file still
    naming a dead holder (crash) is taken over with a warning. The lock is
    released on every exit path of the ``with`` block.
    """

    def __init__(self, name: str, lock_dir: Optional[Path] = None):
        self.name = name
        self.lock_dir = Path(lock_dir) if lock_dir else Path(tempfile.gettempdir())
        self.lock_path = self.lock_dir / f"{name}.lock"
        self._fd: Optional[int] = None
        self.logger = logging.getLogger(__name__)

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _read_owner(self) -> Optional[int]:
        try:
            text = self.lock_path.read_text().strip()
        except OSError:
            return None
        return int(text) if text.isdigit() else None

    def acquire(self):
        if fcntl is None:
            raise FatalStartupError("Single-instance locking requires a POSIX host")
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        previous_owner = self._read_owner()
        try:
            fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as exc:
            raise FatalStartupError(f"Cannot open lock file {self.lock_path}: {exc}") from exc
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            owner = f" (pid {previous_owner})" if previous_owner else ""
            raise FatalStartupError(
                f"Another coordinator is already running for this configuration{owner}: {self.lock_path}"
            )

        if previous_owner and previous_owner != os.getpid() and not _pid_alive(previous_owner):
            self.logger.warning(
                f"Taking over abandoned lock {self.lock_path} left by pid {previous_owner}"
            )
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        os.fsync(fd)
        self._fd = fd
        self.logger.info(f"LOCK_ACQUIRED: {self.lock_path}")

    def release(self):
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            # The file itself stays; an empty owner marks a clean release
            os.ftruncate(fd, 0)
        except OSError:
            pass
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        self.logger.info(f"LOCK_RELEASED: {self.lock_path}")

    def __enter__(self) -> "SingleInstanceGuard":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
