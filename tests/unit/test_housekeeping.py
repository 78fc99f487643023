import pytest
from pathlib import Path
from unittest.mock import patch
from vtq.infrastructure.housekeeping import HousekeepingService

def test_housekeeping_cleanup_part_files(tmp_path):
    (tmp_path / "abc123_film.mkv.part").write_text("data")
    (tmp_path / "abc123_film.mkv").write_text("data")
    (tmp_path / "subdir").mkdir()
    (tmp_path / "subdir" / "show.mkv.part").write_text("data")

    removed = HousekeepingService().cleanup_partial_files(tmp_path)

    assert removed == 2
    assert not (tmp_path / "abc123_film.mkv.part").exists()
    assert (tmp_path / "abc123_film.mkv").exists()
    assert not (tmp_path / "subdir" / "show.mkv.part").exists()

def test_housekeeping_missing_dir(tmp_path):
    assert HousekeepingService().cleanup_partial_files(tmp_path / "nope") == 0

def test_housekeeping_ignores_part_directories(tmp_path):
    (tmp_path / "odd.part").mkdir()
    assert HousekeepingService().cleanup_partial_files(tmp_path) == 0
    assert (tmp_path / "odd.part").is_dir()

def test_housekeeping_handles_oserror(tmp_path, caplog):
    f = tmp_path / "protected.mkv.part"
    f.write_text("data")

    service = HousekeepingService()
    with patch.object(Path, 'unlink', side_effect=OSError("Permission denied")):
        assert service.cleanup_partial_files(tmp_path) == 0
        assert f.exists()
    assert "could not remove" in caplog.text
