import logging
from pathlib import Path

PARTIAL_SUFFIX = ".part"

class HousekeepingService:
    """Startup cleanup of staging leftovers from an interrupted run."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_partial_files(self, directory: Path) -> int:
        """Deletes every *.part below directory; returns how many were removed."""
        directory = Path(directory)
        if not directory.is_dir():
            return 0
        removed = 0
        for partial in sorted(directory.rglob(f"*{PARTIAL_SUFFIX}")):
            if not partial.is_file():
                continue
            try:
                partial.unlink()
                removed += 1
            except OSError as exc:
                self.logger.warning(f"HOUSEKEEPING: could not remove {partial}: {exc}")
        return removed
