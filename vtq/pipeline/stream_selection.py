from pathlib import Path
from typing import List, Optional
from vtq.config.models import StreamsConfig
from vtq.domain.models import StreamInfo

# Used when the track listing is unavailable
DEFAULT_STREAM_MAP = ["-map", "0:v:0", "-map", "0:a:0?", "-map", "0:s?"]


def matches_category(path: Path, config: StreamsConfig) -> bool:
    lowered = str(path).lower()
    return any(fragment.lower() in lowered for fragment in config.category_fragments if fragment)


def _is_language(stream: StreamInfo, language: str) -> bool:
    return bool(stream.language) and stream.language.lower() == language.lower()


def _is_signage(stream: StreamInfo, keywords: List[str]) -> bool:
    title = (stream.title or "").lower()
    return any(keyword.lower() in title for keyword in keywords if keyword)


def select_streams(source_path: Path, streams: Optional[List[StreamInfo]], config: StreamsConfig) -> List[str]:
    """Builds ffmpeg -map arguments for the transcode.

    The first video track is always kept. For paths matching a configured
    category fragment: the first audio track, any audio track in the target
    language, and subtitles that are in the target language or titled as
    signage (signs/songs). Otherwise: the first audio track and all subtitles.
    """
    if not streams:
        return list(DEFAULT_STREAM_MAP)

    video = [s for s in streams if s.codec_type == "video"]
    audio = [s for s in streams if s.codec_type == "audio"]
    subtitles = [s for s in streams if s.codec_type == "subtitle"]

    selected: List[StreamInfo] = video[:1]
    if matches_category(source_path, config):
        selected.extend(
            s for i, s in enumerate(audio)
            if i == 0 or _is_language(s, config.target_language)
        )
        selected.extend(
            s for s in subtitles
            if _is_language(s, config.target_language) or _is_signage(s, config.signage_keywords)
        )
    else:
        selected.extend(audio[:1])
        selected.extend(subtitles)

    args: List[str] = []
    for stream in selected:
        args.extend(["-map", f"0:{stream.index}"])
    return args
