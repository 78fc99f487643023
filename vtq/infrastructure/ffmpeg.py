import os
import subprocess
import re
import logging
import time
import threading
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from vtq.config.models import EncoderConfig
from vtq.domain.errors import TranscodeFailure

CONTAINER_FORMATS = {".mkv": "matroska", ".mp4": "mp4", ".m4v": "mp4", ".mov": "mov"}

# Regex to parse 'time=00:00:00.00' from ffmpeg output
TIME_REGEX = re.compile(r"time=(\d+):(\d+):(\d+\.\d+)")

def partial_path(output_path: Path) -> Path:
    """ffmpeg writes here; renamed to output_path only on success."""
    return output_path.with_name(f"{output_path.name}.part")

@dataclass
class TranscodeOutcome:
    success: bool
    returncode: Optional[int]
    elapsed_s: float
    output_bytes: int = 0
    rescued: bool = False  # accepted by the size/runtime fallback
    message: str = ""

class TranscodeProcess:
    """Handle for a running ffmpeg child.

    Output (stderr merged into stdout) is drained by a daemon reader thread
    into a bounded tail buffer, so a chatty encoder never blocks on a full pipe
    and the coordinator only ever polls.
    """

    def __init__(self, process: subprocess.Popen, output_path: Path, tail_lines: int = 40):
        self.process = process
        self.output_path = output_path
        self.part_path = partial_path(output_path)
        self.started = time.monotonic()
        self.progress_s = 0.0
        self._tail: "deque[str]" = deque(maxlen=tail_lines)
        self._reader = threading.Thread(target=self._drain, daemon=True)
        self._reader.start()

    def _drain(self):
        if not self.process.stdout:
            return
        for line in self.process.stdout:
            self._tail.append(line.rstrip())
            match = TIME_REGEX.search(line)
            if match:
                h, m, s = map(float, match.groups())
                self.progress_s = h * 3600 + m * 60 + s

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self.started

    def poll(self) -> Optional[int]:
        return self.process.poll()

    def finished(self) -> bool:
        return self.poll() is not None

    def join_output(self, timeout: float = 1.0):
        self._reader.join(timeout=timeout)

    def tail(self, lines: int = 5) -> str:
        return "\n".join(list(self._tail)[-lines:])

    def terminate(self, timeout: float = 3.0):
        if self.process.poll() is not None:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()

class FFmpegAdapter:
    """Wrapper around ffmpeg for re-encoding a local download copy."""

    def __init__(self, config: EncoderConfig, target_bitrate_kbps: int):
        self.config = config
        self.target_bitrate_kbps = target_bitrate_kbps
        self.logger = logging.getLogger(__name__)

    def _rate_control_args(self) -> List[str]:
        mode = self.config.rate_control
        if mode == "crf":
            return ["-crf", str(self.config.quality)]
        if mode == "cq":
            return ["-cq", str(self.config.quality), "-b:v", "0"]
        target = self.target_bitrate_kbps
        return [
            "-b:v", f"{target}k",
            "-maxrate", f"{int(target * 1.5)}k",
            "-bufsize", f"{target * 2}k",
        ]

    def build_command(self, input_path: Path, output_path: Path, stream_map: List[str]) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            self.config.ffmpeg_bin,
            "-hide_banner",
            "-nostdin",
            "-y",  # Overwrite output files
            "-i", str(input_path),
        ]
        cmd.extend(stream_map)
        cmd.extend(["-c:v", self.config.video_codec, "-preset", self.config.preset])
        cmd.extend(self._rate_control_args())
        cmd.extend(["-c:a", "copy", "-c:s", "copy", "-map_metadata", "0"])

        # .part extension doesn't indicate format, so force it
        container = CONTAINER_FORMATS.get(output_path.suffix.lower(), "matroska")
        cmd.extend(["-f", container, str(partial_path(output_path))])
        return cmd

    def _elevate_priority(self, pid: int):
        nice = self.config.priority_nice
        if nice is None or not hasattr(os, "setpriority"):
            return
        try:
            os.setpriority(os.PRIO_PROCESS, pid, nice)
        except OSError as exc:
            self.logger.warning(f"Could not set priority {nice} for ffmpeg pid {pid}: {exc}")

    def start(self, input_path: Path, output_path: Path, stream_map: List[str]) -> TranscodeProcess:
        """Spawns ffmpeg and returns immediately with a pollable handle."""
        cmd = self.build_command(input_path, output_path, stream_map)
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                errors="replace",
                bufsize=1
            )
        except OSError as exc:
            raise TranscodeFailure(f"Could not start ffmpeg: {exc}") from exc
        self._elevate_priority(process.pid)
        self.logger.info(f"FFMPEG_START: {input_path.name} pid={process.pid}")
        return TranscodeProcess(process, output_path)

    def interpret(self, handle: TranscodeProcess) -> TranscodeOutcome:
        """Decides success for a finished process and settles the output file.

        Exit code 0 is success. Otherwise, if enabled, an output of at least
        min_output_bytes from a run of at least min_runtime_s is accepted with
        a warning; ffmpeg builds have been seen reporting spurious non-zero
        codes. This can mask a truncated encode.
        """
        handle.join_output()
        returncode = handle.poll()
        elapsed = handle.elapsed_s
        part = handle.part_path
        try:
            output_bytes = part.stat().st_size
        except OSError:
            output_bytes = 0

        name = handle.output_path.name
        if returncode == 0 and output_bytes > 0:
            outcome = TranscodeOutcome(True, returncode, elapsed, output_bytes)
        elif (
            self.config.accept_nonzero_exit
            and output_bytes >= self.config.min_output_bytes
            and elapsed >= self.config.min_runtime_s
        ):
            self.logger.warning(
                f"FFMPEG_RESCUED: {name} exit={returncode} accepted "
                f"(output={output_bytes}B, runtime={elapsed:.0f}s)"
            )
            outcome = TranscodeOutcome(True, returncode, elapsed, output_bytes, rescued=True)
        else:
            message = f"ffmpeg exited with code {returncode}"
            if returncode == 0:
                message = "ffmpeg exited 0 but produced no output"
            tail = handle.tail()
            if tail:
                message = f"{message}: {tail.splitlines()[-1]}"
            outcome = TranscodeOutcome(False, returncode, elapsed, output_bytes, message=message)

        if outcome.success:
            os.replace(part, handle.output_path)
        elif part.exists():
            part.unlink()
        self.logger.info(
            f"FFMPEG_END: {name} status={'completed' if outcome.success else 'failed'} "
            f"code={returncode} elapsed={elapsed:.2f}s"
        )
        return outcome
