from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Any
from pydantic import BaseModel, Field

class QueueStatus(str, Enum):
    QUEUED = "Queued"
    DOWNLOADING = "Downloading"
    ENCODING = "Encoding"
    UPLOADING = "Uploading"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (QueueStatus.DOWNLOADING, QueueStatus.ENCODING, QueueStatus.UPLOADING)

# Forward order; FAILED sits outside it
STATUS_ORDER = {
    QueueStatus.QUEUED: 0,
    QueueStatus.DOWNLOADING: 1,
    QueueStatus.ENCODING: 2,
    QueueStatus.UPLOADING: 3,
    QueueStatus.COMPLETED: 4,
}

class Classification(str, Enum):
    ELIGIBLE = "eligible"
    SKIP = "skip"

class MediaFile(BaseModel):
    path: Path
    size_bytes: int
    mtime: float
    watch_root: Path
    category: str

    @property
    def relative_path(self) -> Path:
        try:
            return self.path.relative_to(self.watch_root)
        except ValueError:
            return Path(self.path.name)

class ProbeResult(BaseModel):
    codec: str
    bitrate_kbps: float = 0.0
    classification: Classification
    reason: str = ""

    @property
    def is_skip(self) -> bool:
        return self.classification == Classification.SKIP

class StreamInfo(BaseModel):
    index: int
    codec_type: str
    codec: str = "unknown"
    language: Optional[str] = None
    title: Optional[str] = None

class QueueEntry(BaseModel):
    status: QueueStatus
    added_at: datetime
    updated_at: datetime
    details: str = ""

class EventPointer(BaseModel):
    path: str
    reason: str = ""
    at: datetime

class ProgressSnapshot(BaseModel):
    version: int = 1
    updated_at: Optional[datetime] = None
    current_file: Optional[str] = None
    current_stage: Optional[str] = None
    active: Dict[str, str] = Field(default_factory=dict)
    last_completed: Optional[EventPointer] = None
    last_skipped: Optional[EventPointer] = None
    last_failed: Optional[EventPointer] = None
    encoded: int = 0
    skipped: int = 0
    failed: int = 0

@dataclass
class PipelineJob:
    """Runtime record for a file the coordinator is currently advancing."""
    source: MediaFile
    download_path: Path
    encode_path: Path
    destination_path: Path
    status: QueueStatus = QueueStatus.QUEUED
    download_future: Optional[Future] = None
    transcode: Optional[Any] = None  # TranscodeProcess
    download_token: Optional[Any] = None  # SlotToken
    transcode_token: Optional[Any] = None  # SlotToken
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> str:
        return str(self.source.path)
