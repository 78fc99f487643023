import pytest
import os
import time
import yaml
from datetime import datetime, timedelta
from pathlib import Path
from vtq.config.models import AppConfig
from vtq.domain.models import MediaFile
from vtq.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def workspace(tmp_path):
    """Creates watch root, staging, destination and state directories."""
    dirs = {
        "watch": tmp_path / "incoming",
        "download": tmp_path / "staging" / "download",
        "encode": tmp_path / "staging" / "encode",
        "dest": tmp_path / "library",
        "state": tmp_path / "state",
        "locks": tmp_path / "locks",
    }
    for d in dirs.values():
        d.mkdir(parents=True)
    return dirs

@pytest.fixture
def sample_config(workspace):
    """Returns an AppConfig wired to the temporary workspace, with gating disabled."""
    return AppConfig(
        general={
            "poll_interval_s": 0.05,
            "download_buffer": 2,
            "transcode_slots": 1,
            "download_workers": 2,
            "extensions": [".mkv", ".mp4"],
            "min_size_bytes": 10,
            "min_age_s": 0,
            "stability_wait_s": 0,
            "debug": False,
        },
        paths={
            "watch_roots": [str(workspace["watch"])],
            "destination_root": str(workspace["dest"]),
            "download_dir": str(workspace["download"]),
            "encode_dir": str(workspace["encode"]),
            "state_dir": str(workspace["state"]),
            "lock_dir": str(workspace["locks"]),
        },
        triage={
            "target_bitrate_kbps": 6000,
            "threshold_multiplier": 1.3,
        },
        encoder={
            "min_output_bytes": 100,
            "min_runtime_s": 0,
            "priority_nice": None,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path, workspace):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vtq.yaml"

    content = {
        'general': {
            'poll_interval_s': 5,
            'download_buffer': 3,
            'transcode_slots': 2,
            'extensions': ['mkv', 'MP4'],
            'min_size_bytes': 0,
        },
        'paths': {
            'watch_roots': str(workspace["watch"]),
            'destination_root': str(workspace["dest"]),
            'download_dir': str(workspace["download"]),
            'encode_dir': str(workspace["encode"]),
            'state_dir': str(workspace["state"]),
            'lock_dir': str(workspace["locks"]),
        },
        'triage': {
            'target_bitrate_kbps': 6000,
            'threshold_multiplier': 1.3,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Clock Fixtures
# ============================================================================

class ManualClock:
    """Settable clock for queue staleness tests."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

@pytest.fixture
def clock():
    return ManualClock()

# ============================================================================
# File System Fixtures
# ============================================================================

def write_media(path: Path, size: int = 2048, age_s: float = 0) -> Path:
    """Writes a dummy media file of the given size, optionally back-dated."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\0" * size)
    if age_s:
        stamp = time.time() - age_s
        os.utime(path, (stamp, stamp))
    return path

def media_file_for(path: Path, watch_root: Path, category: str = "movies") -> MediaFile:
    st = path.stat()
    return MediaFile(path=path, size_bytes=st.st_size, mtime=st.st_mtime, watch_root=watch_root, category=category)

@pytest.fixture
def media_for(workspace):
    """Factory turning a path under the watch root into a MediaFile snapshot."""
    def _media(path: Path, category: str = "movies") -> MediaFile:
        return media_file_for(path, workspace["watch"], category)
    return _media

@pytest.fixture
def make_media(workspace):
    """Factory writing a file under the watch root and returning its path."""
    def _make(rel: str, size: int = 2048, age_s: float = 0) -> Path:
        return write_media(workspace["watch"] / rel, size=size, age_s=age_s)
    return _make

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
