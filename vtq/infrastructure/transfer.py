import logging
import os
import shutil
from pathlib import Path
from typing import Optional
from vtq.domain.errors import TransientIOError, UploadFailure

class SizeMismatch(OSError):
    pass

def _copy_then_move(source: Path, target: Path, expected_size: Optional[int] = None):
    """Copies to ``<target>.part`` and renames, so target is all-or-nothing."""
    target.parent.mkdir(parents=True, exist_ok=True)
    part = target.with_name(f"{target.name}.part")
    try:
        shutil.copy2(source, part)
        if expected_size is not None:
            copied = part.stat().st_size
            if copied != expected_size:
                raise SizeMismatch(f"size mismatch ({copied} of {expected_size} bytes)")
        os.replace(part, target)
    except BaseException:
        try:
            part.unlink()
        except OSError:
            pass
        raise

class TransferService:
    """Moves media between the watch roots, local staging and the destination."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def download(self, source: Path, local_copy: Path) -> Path:
        """Copies a remote source into the download staging dir."""
        try:
            _copy_then_move(source, local_copy)
        except OSError as exc:
            raise TransientIOError(f"Download of {source} failed: {exc}") from exc
        self.logger.info(f"DOWNLOADED: {source.name} -> {local_copy}")
        return local_copy

    def upload(self, encoded: Path, destination: Path) -> Path:
        """Publishes an encode; never replaces a file already at destination."""
        if destination.exists():
            raise UploadFailure(f"Upload of {encoded.name} refused: {destination} already exists")
        try:
            _copy_then_move(encoded, destination, expected_size=encoded.stat().st_size)
        except SizeMismatch as exc:
            raise UploadFailure(f"Upload {exc} for {destination}") from exc
        except OSError as exc:
            raise UploadFailure(f"Upload of {encoded.name} to {destination} failed: {exc}") from exc
        self.logger.info(f"UPLOADED: {encoded.name} -> {destination}")
        return destination

    def remove(self, path: Path) -> bool:
        """Deletes a file if present; returns False when it could not be removed."""
        try:
            path.unlink()
        except FileNotFoundError:
            return True
        except OSError as exc:
            self.logger.warning(f"Failed to remove {path}: {exc}")
            return False
        return True
