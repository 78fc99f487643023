import pytest
from pathlib import Path
from pydantic import ValidationError
from vtq.config.loader import load_config
from vtq.config.models import AppConfig, GeneralConfig, EncoderConfig, TriageConfig
from vtq.domain.errors import FatalStartupError

PATHS = {
    "watch_roots": ["/in"],
    "destination_root": "/out",
    "download_dir": "/stage/dl",
    "encode_dir": "/stage/enc",
    "state_dir": "/state",
}

def test_valid_config():
    data = {
        "general": {"download_buffer": 4, "transcode_slots": 2, "extensions": ["mkv", ".MP4"]},
        "paths": PATHS,
        "triage": {"target_bitrate_kbps": 5000, "threshold_multiplier": 1.5},
    }
    config = AppConfig(**data)
    assert config.general.download_buffer == 4
    assert config.general.extensions == [".mkv", ".mp4"]
    assert config.triage.skip_threshold_kbps == 7500

def test_config_defaults():
    config = AppConfig(paths=PATHS)
    assert config.queue.terminal_cooldown_h == 24
    assert config.queue.encoding_stale_h == 2
    assert config.queue.active_stale_h == 4
    assert config.encoder.rate_control == "vbr"
    assert config.encoder.accept_nonzero_exit is True
    assert "hevc" in config.triage.compressed_codecs
    assert config.triage.legacy_codec == "h264"
    assert config.paths.queue_file == Path("/state/queue.json")
    assert config.paths.progress_file == Path("/state/progress.json")
    assert config.paths.skip_log_file == Path("/state/skipped.log")

def test_invalid_buffer_capacity():
    with pytest.raises(ValidationError):
        GeneralConfig(download_buffer=0)

def test_invalid_rate_control():
    with pytest.raises(ValidationError):
        EncoderConfig(rate_control="abr")

def test_rate_control_is_normalized():
    assert EncoderConfig(rate_control=" CRF ").rate_control == "crf"

def test_download_workers_capped_by_buffer():
    config = AppConfig(general={"download_buffer": 1, "download_workers": 4}, paths=PATHS)
    assert config.general.download_workers == 1

def test_category_dirs_lowercased():
    config = AppConfig(paths={**PATHS, "category_dirs": {"TV Shows": "series"}})
    assert config.paths.category_dirs == {"tv shows": "series"}

def test_skip_threshold():
    assert TriageConfig(target_bitrate_kbps=6000, threshold_multiplier=1.3).skip_threshold_kbps == pytest.approx(7800)

def test_load_config_from_yaml(config_yaml_path, workspace):
    config = load_config(config_yaml_path)
    assert config.general.download_buffer == 3
    assert config.general.transcode_slots == 2
    # single string watch root is promoted to a list
    assert config.paths.watch_roots == [str(workspace["watch"])]
    assert config.general.extensions == [".mkv", ".mp4"]

def test_load_config_missing_file(tmp_path):
    with pytest.raises(FatalStartupError, match="not found"):
        load_config(tmp_path / "missing.yaml")

def test_load_config_invalid(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("general:\n  download_buffer: 0\n")
    with pytest.raises(FatalStartupError, match="Invalid config"):
        load_config(bad)
