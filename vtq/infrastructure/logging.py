import logging
import sys
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
CONSOLE_FORMAT = '%(levelname)s: %(message)s'

def setup_logging(
    state_dir: Path,
    debug: bool = False,
    log_path: Optional[Path] = None,
    console: bool = False,
) -> logging.Logger:
    """
    Configure root logging for a VTQ process.

    The file log (``vtq.log`` under state_dir unless log_path is given) always
    receives every record at the chosen level. With console=True, records are
    also mirrored to stderr in a shorter format.

    Args:
        state_dir: Directory holding queue/progress state; created if missing
        debug: If True, log at DEBUG (readiness and triage decisions)
        log_path: Optional log file location overriding state_dir/vtq.log
        console: Also log to stderr (used by `vtq run`)
    """
    state_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (state_dir / "vtq.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    handlers: List[logging.Handler] = [logging.FileHandler(log_file, encoding='utf-8')]
    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        handlers.append(ch)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True  # replaces handlers from a previous call
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")
    return logger
