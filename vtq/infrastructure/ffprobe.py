import subprocess
import json
from pathlib import Path
from typing import Dict, Any, List, Tuple
from vtq.domain.errors import ProbeFailure
from vtq.domain.models import StreamInfo

class FFprobeAdapter:
    """Wrapper around ffprobe to extract codec, bitrate and track information."""

    def __init__(self, binary: str = "ffprobe", timeout_s: float = 60.0):
        self.binary = binary
        self.timeout_s = timeout_s

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    def _run(self, file_path: Path) -> Dict[str, Any]:
        cmd = [
            self.binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_s)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ProbeFailure(f"ffprobe failed for {file_path}: {exc}") from exc
        if result.returncode != 0:
            raise ProbeFailure(f"ffprobe failed for {file_path}: {result.stderr}")
        if not (result.stdout or "").strip():
            raise ProbeFailure(f"ffprobe returned no output for {file_path}")
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ProbeFailure(f"ffprobe returned invalid JSON for {file_path}: {exc}") from exc

    def probe(self, file_path: Path) -> Tuple[str, float]:
        """Returns (codec, bitrate_kbps) of the first video stream.

        Bitrate falls back from the stream to the container; 0.0 when neither
        reports one.
        """
        data = self._run(file_path)
        video_stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ProbeFailure(f"No video stream found in {file_path}")

        bit_rate = self._to_float(video_stream.get("bit_rate"))
        if bit_rate <= 0:
            bit_rate = self._to_float((data.get("format") or {}).get("bit_rate"))
        codec = str(video_stream.get("codec_name") or "unknown").lower()
        return codec, bit_rate / 1000.0 if bit_rate > 0 else 0.0

    def list_streams(self, file_path: Path) -> List[StreamInfo]:
        """Lists every stream with its language and title tags."""
        data = self._run(file_path)
        streams = []
        for s in data.get("streams", []):
            tags = s.get("tags", {}) or {}
            lowered = {str(k).lower(): v for k, v in tags.items()}
            streams.append(StreamInfo(
                index=int(s.get("index", len(streams))),
                codec_type=str(s.get("codec_type") or "unknown"),
                codec=str(s.get("codec_name") or "unknown"),
                language=lowered.get("language"),
                title=lowered.get("title"),
            ))
        return streams
