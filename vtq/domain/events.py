"""Domain events for the transcode pipeline.

Events represent queue transitions and triage outcomes that flow through the
EventBus, decoupling the coordinator from observers such as the progress
reporter.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import QueueStatus


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class JobEvent(Event):
    """Base class for events related to a specific source file."""

    path: Path


class JobAdmitted(JobEvent):
    """Emitted when try_enqueue accepted a file (entry is Queued)."""

    category: str = ""


class JobStageChanged(JobEvent):
    """Emitted on every forward queue transition of an active job."""

    status: QueueStatus
    details: str = ""


class JobCompleted(JobEvent):
    """Emitted after upload and cleanup; entry is Completed."""

    output_path: Path


class JobFailed(JobEvent):
    """Emitted when a job is marked Failed."""

    error_message: str
    stage: Optional[QueueStatus] = None


class JobReclaimed(JobEvent):
    """Emitted when reclaim_stale dropped an entry."""

    pass


class FileSkipped(JobEvent):
    """Emitted when triage ruled a file already efficient."""

    codec: str
    size_bytes: int
    reason: str


class CycleFinished(Event):
    """Emitted at the end of every coordinator cycle."""

    downloading: int = 0
    buffered: int = 0
    encoding: int = 0
