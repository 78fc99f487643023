import os
from pathlib import Path
from typing import Dict, Iterable, List, Generator, Optional
from vtq.domain.models import MediaFile

class FileScanner:
    """Recursively scans watch roots for candidate media files."""

    def __init__(
        self,
        extensions: List[str],
        min_size_bytes: int = 0,
        category_dirs: Optional[Dict[str, str]] = None,
        default_category: str = "movies",
        exclude_dirs: Iterable[Path] = (),
    ):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.min_size_bytes = min_size_bytes
        self.category_dirs = {k.lower(): v for k, v in (category_dirs or {}).items()}
        self.default_category = default_category
        self.exclude_dirs = {Path(p).resolve() for p in exclude_dirs}

    def infer_category(self, root_dir: Path, file_path: Path) -> str:
        try:
            parts = file_path.relative_to(root_dir).parts
        except ValueError:
            return self.default_category
        if len(parts) > 1:
            return self.category_dirs.get(parts[0].lower(), self.default_category)
        return self.default_category

    def scan(self, root_dir: Path) -> Generator[MediaFile, None, None]:
        """Scans the directory and yields MediaFile snapshots."""
        root_dir = Path(root_dir).absolute()
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            # Ensure deterministic traversal; never descend into staging dirs
            dirs[:] = sorted(
                d for d in dirs
                if not d.startswith(".") and (root_path / d).resolve() not in self.exclude_dirs
            )
            files.sort()

            for file_name in files:
                file_path = root_path / file_name

                if file_path.suffix.lower() not in self.extensions:
                    continue

                try:
                    st = file_path.stat()
                except OSError:
                    # Vanished or unreadable between listing and stat
                    continue
                if st.st_size < self.min_size_bytes:
                    continue

                yield MediaFile(
                    path=file_path,
                    size_bytes=st.st_size,
                    mtime=st.st_mtime,
                    watch_root=root_dir,
                    category=self.infer_category(root_dir, file_path),
                )
