import logging
import threading
from typing import Dict, Optional, Tuple
from vtq.config.models import TriageConfig
from vtq.domain.errors import ProbeFailure
from vtq.domain.models import Classification, MediaFile, ProbeResult
from vtq.infrastructure.ffprobe import FFprobeAdapter
from vtq.infrastructure.skip_log import SkipAuditLog

REASON_ALREADY_COMPRESSED = "already compressed"
REASON_LOW_BITRATE = "low bitrate"


def decide(codec: str, bitrate_kbps: float, config: TriageConfig) -> Tuple[Classification, str]:
    """Skip/eligible decision for a probed file; pure and deterministic."""
    codec = (codec or "").lower()
    compressed = {c.lower() for c in config.compressed_codecs}
    if codec in compressed:
        return Classification.SKIP, REASON_ALREADY_COMPRESSED
    if codec == config.legacy_codec.lower() and bitrate_kbps <= config.skip_threshold_kbps:
        return Classification.SKIP, REASON_LOW_BITRATE
    return Classification.ELIGIBLE, ""


class CodecClassifier:
    """Probes a candidate once and rules it skip or eligible.

    Decisions are cached per path together with the (size, mtime) they were
    made for, so an unchanged file is probed and audit-logged only once and a
    rewritten file replaces its old decision. Probe failures are not cached:
    the file is retried next cycle.
    """

    def __init__(self, config: TriageConfig, ffprobe_adapter: FFprobeAdapter, skip_log: SkipAuditLog):
        self.config = config
        self.ffprobe_adapter = ffprobe_adapter
        self.skip_log = skip_log
        self.logger = logging.getLogger(__name__)
        self._cache: Dict[str, Tuple[Tuple[int, float], ProbeResult]] = {}
        self._cache_lock = threading.Lock()

    @staticmethod
    def _version(media_file: MediaFile) -> Tuple[int, float]:
        return (media_file.size_bytes, media_file.mtime)

    def cached(self, media_file: MediaFile) -> Optional[ProbeResult]:
        with self._cache_lock:
            hit = self._cache.get(str(media_file.path))
        if hit is None or hit[0] != self._version(media_file):
            return None
        return hit[1]

    def forget(self, media_file: MediaFile):
        with self._cache_lock:
            self._cache.pop(str(media_file.path), None)

    def classify(self, media_file: MediaFile) -> Optional[ProbeResult]:
        """Returns the triage result, or None when the probe failed."""
        cached = self.cached(media_file)
        if cached is not None:
            return cached

        try:
            codec, bitrate_kbps = self.ffprobe_adapter.probe(media_file.path)
        except ProbeFailure as exc:
            self.logger.warning(f"PROBE_FAILED: {media_file.path.name} skipped this cycle: {exc}")
            return None

        classification, reason = decide(codec, bitrate_kbps, self.config)
        result = ProbeResult(
            codec=codec,
            bitrate_kbps=bitrate_kbps,
            classification=classification,
            reason=reason,
        )
        self.logger.debug(
            f"TRIAGE: {media_file.path.name} codec={codec} bitrate={bitrate_kbps:.0f}kbps "
            f"threshold={self.config.skip_threshold_kbps:.0f}kbps -> {classification.value}"
        )
        if result.is_skip:
            self.skip_log.append(media_file.path, codec, media_file.size_bytes, reason)
        with self._cache_lock:
            self._cache[str(media_file.path)] = (self._version(media_file), result)
        return result
