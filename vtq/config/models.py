from pathlib import Path
from typing import List, Dict, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

RATE_CONTROL_CHOICES = ("vbr", "crf", "cq")

class GeneralConfig(BaseModel):
    poll_interval_s: float = Field(default=30.0, gt=0)
    download_buffer: int = Field(default=2, ge=1)
    transcode_slots: int = Field(default=1, ge=1)
    download_workers: int = Field(default=2, ge=1)
    extensions: List[str] = Field(default_factory=lambda: [".mkv", ".mp4", ".m4v", ".avi", ".mov", ".ts"])
    min_size_bytes: int = Field(default=100 * 1024 * 1024, ge=0)  # excludes samples and menus
    min_age_s: float = Field(default=120.0, ge=0)
    stability_wait_s: float = Field(default=2.0, ge=0)
    debug: bool = False
    log_path: Optional[str] = None

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]

class PathsConfig(BaseModel):
    watch_roots: List[str] = Field(default_factory=list)
    destination_root: str
    download_dir: str
    encode_dir: str
    state_dir: str
    lock_dir: Optional[str] = None  # defaults to the system temp dir
    category_dirs: Dict[str, str] = Field(default_factory=lambda: {"tv": "series", "series": "series", "movies": "movies"})
    default_category: str = "movies"

    @field_validator("category_dirs")
    @classmethod
    def lowercase_keys(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {k.lower(): cat for k, cat in v.items()}

    @property
    def queue_file(self) -> Path:
        return Path(self.state_dir) / "queue.json"

    @property
    def progress_file(self) -> Path:
        return Path(self.state_dir) / "progress.json"

    @property
    def skip_log_file(self) -> Path:
        return Path(self.state_dir) / "skipped.log"

class TriageConfig(BaseModel):
    target_bitrate_kbps: int = Field(default=6000, gt=0)
    threshold_multiplier: float = Field(default=1.3, gt=0)
    compressed_codecs: List[str] = Field(default_factory=lambda: ["hevc", "h265", "av1", "vp9"])
    legacy_codec: str = "h264"

    @property
    def skip_threshold_kbps(self) -> float:
        return self.target_bitrate_kbps * self.threshold_multiplier

class EncoderConfig(BaseModel):
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    probe_timeout_s: float = Field(default=60.0, gt=0)
    video_codec: str = "libx265"
    rate_control: str = "vbr"
    preset: str = "medium"
    quality: int = Field(default=24, ge=0, le=63)  # crf/cq value
    output_extension: str = ".mkv"
    priority_nice: Optional[int] = Field(default=-5, ge=-20, le=19)
    accept_nonzero_exit: bool = True
    min_output_bytes: int = Field(default=50 * 1024 * 1024, ge=0)
    min_runtime_s: float = Field(default=60.0, ge=0)

    @field_validator("rate_control")
    @classmethod
    def validate_rate_control(cls, v: str) -> str:
        mode = v.strip().lower()
        if mode not in RATE_CONTROL_CHOICES:
            raise ValueError(f"Unsupported rate_control '{v}'. Use one of: {', '.join(RATE_CONTROL_CHOICES)}.")
        return mode

    @field_validator("output_extension")
    @classmethod
    def normalize_output_extension(cls, v: str) -> str:
        return v if v.startswith(".") else f".{v}"

class StreamsConfig(BaseModel):
    """Track selection applied when building the ffmpeg stream map."""
    category_fragments: List[str] = Field(default_factory=lambda: ["anime"])
    target_language: str = "eng"
    signage_keywords: List[str] = Field(default_factory=lambda: ["signs", "songs"])

class QueueConfig(BaseModel):
    terminal_cooldown_h: float = Field(default=24.0, gt=0)
    encoding_stale_h: float = Field(default=2.0, gt=0)
    active_stale_h: float = Field(default=4.0, gt=0)

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    paths: PathsConfig
    triage: TriageConfig = Field(default_factory=TriageConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    streams: StreamsConfig = Field(default_factory=StreamsConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)

    @model_validator(mode="after")
    def validate_buffer(self):
        if self.general.download_workers > self.general.download_buffer:
            # Extra workers could never be fed
            self.general.download_workers = self.general.download_buffer
        return self
