"""Error taxonomy for the transcode pipeline.

Per-file errors (everything except FatalStartupError) are caught at the
coordinator boundary and turned into a Failed queue entry plus a log line.
"""


class VtqError(Exception):
    """Base class for all pipeline errors."""


class TransientIOError(VtqError):
    """Watch root or destination temporarily unreachable; retried next cycle."""


class ProbeFailure(VtqError):
    """ffprobe errored, timed out or returned nothing usable."""


class TranscodeFailure(VtqError):
    """ffmpeg failed and the output was not rescued by the size/runtime check."""


class UploadFailure(VtqError):
    """Encoded artifact could not be placed at the destination."""


class FatalStartupError(VtqError):
    """Lock unavailable, watch root missing, binaries missing or bad config."""


class InvalidTransitionError(VtqError):
    """Queue status change that would move backwards or leave a terminal state."""


class QueueStateError(VtqError):
    """Queue document has a version this build cannot read."""
