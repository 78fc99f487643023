import pytest
from datetime import datetime
from pathlib import Path
from pydantic import ValidationError
from vtq.domain.models import MediaFile, QueueEntry, QueueStatus, ProbeResult, Classification, PipelineJob

def test_queue_status_values():
    assert [s.value for s in QueueStatus] == ["Queued", "Downloading", "Encoding", "Uploading", "Completed", "Failed"]

def test_queue_status_groups():
    assert QueueStatus.COMPLETED.is_terminal and QueueStatus.FAILED.is_terminal
    assert not QueueStatus.QUEUED.is_terminal
    assert QueueStatus.ENCODING.is_active
    assert not QueueStatus.QUEUED.is_active

def test_queue_entry_roundtrip_json():
    now = datetime(2026, 1, 1, 12, 0, 0)
    entry = QueueEntry(status=QueueStatus.ENCODING, added_at=now, updated_at=now, details="x265")
    data = entry.model_dump(mode="json")
    assert data["status"] == "Encoding"
    assert QueueEntry.model_validate(data) == entry

def test_invalid_status():
    now = datetime.now()
    with pytest.raises(ValidationError):
        QueueEntry(status="Exploded", added_at=now, updated_at=now)

def test_media_file_relative_path():
    media = MediaFile(path=Path("/in/TV/Show/e01.mkv"), size_bytes=1, mtime=0.0, watch_root=Path("/in"), category="series")
    assert media.relative_path == Path("TV/Show/e01.mkv")
    outside = media.model_copy(update={"watch_root": Path("/elsewhere")})
    assert outside.relative_path == Path("e01.mkv")

def test_probe_result_is_skip():
    assert ProbeResult(codec="hevc", classification=Classification.SKIP).is_skip
    assert not ProbeResult(codec="h264", classification=Classification.ELIGIBLE).is_skip

def test_pipeline_job_defaults():
    media = MediaFile(path=Path("/in/a.mkv"), size_bytes=1, mtime=0.0, watch_root=Path("/in"), category="movies")
    job = PipelineJob(source=media, download_path=Path("/dl/a.mkv"), encode_path=Path("/enc/a.mkv"),
                      destination_path=Path("/lib/movies/a.mkv"))
    assert job.status == QueueStatus.QUEUED
    assert job.key == "/in/a.mkv"
    assert job.download_token is None and job.transcode is None
