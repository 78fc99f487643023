import pytest
from pathlib import Path
from unittest.mock import patch, MagicMock
from vtq.infrastructure.ffmpeg import FFmpegAdapter, TranscodeProcess, partial_path
from vtq.config.models import EncoderConfig
from vtq.domain.errors import TranscodeFailure

STREAM_MAP = ["-map", "0:v:0", "-map", "0:a:0?", "-map", "0:s?"]

def _fake_process(lines=(), returncode=0):
    process = MagicMock()
    process.stdout = list(lines)
    process.poll.return_value = returncode
    process.pid = 4242
    return process

def _handle(output_path, lines=(), returncode=0, part_bytes=None, elapsed=10.0):
    if part_bytes is not None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        partial_path(output_path).write_bytes(b"\0" * part_bytes)
    handle = TranscodeProcess(_fake_process(lines, returncode), output_path)
    handle.started -= elapsed
    return handle

def test_partial_path():
    assert partial_path(Path("/enc/movie.mkv")) == Path("/enc/movie.mkv.part")

def test_command_vbr():
    adapter = FFmpegAdapter(EncoderConfig(rate_control="vbr"), target_bitrate_kbps=6000)
    cmd = adapter.build_command(Path("in.mkv"), Path("/enc/out.mkv"), STREAM_MAP)

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-i") + 1] == "in.mkv"
    assert cmd[cmd.index("-c:v") + 1] == "libx265"
    assert cmd[cmd.index("-b:v") + 1] == "6000k"
    assert cmd[cmd.index("-maxrate") + 1] == "9000k"
    assert cmd[cmd.index("-bufsize") + 1] == "12000k"
    assert cmd[cmd.index("-f") + 1] == "matroska"
    assert cmd[-1] == "/enc/out.mkv.part"
    # stream map sits between the input and the codec options
    assert cmd[cmd.index("-i") + 2: cmd.index("-c:v")] == STREAM_MAP

def test_command_crf_and_cq():
    crf = FFmpegAdapter(EncoderConfig(rate_control="crf", quality=22), 6000)
    cmd = crf.build_command(Path("in.mkv"), Path("out.mkv"), STREAM_MAP)
    assert cmd[cmd.index("-crf") + 1] == "22"
    assert "-maxrate" not in cmd

    cq = FFmpegAdapter(EncoderConfig(rate_control="cq", quality=28, video_codec="hevc_nvenc"), 6000)
    cmd = cq.build_command(Path("in.mkv"), Path("out.mp4"), STREAM_MAP)
    assert cmd[cmd.index("-cq") + 1] == "28"
    assert cmd[cmd.index("-b:v") + 1] == "0"
    assert "hevc_nvenc" in cmd
    assert cmd[cmd.index("-f") + 1] == "mp4"

def test_command_copies_audio_and_subtitles():
    adapter = FFmpegAdapter(EncoderConfig(), 6000)
    cmd = adapter.build_command(Path("in.mkv"), Path("out.mkv"), STREAM_MAP)
    assert cmd[cmd.index("-c:a") + 1] == "copy"
    assert cmd[cmd.index("-c:s") + 1] == "copy"

def test_start_spawns_and_sets_priority(tmp_path):
    adapter = FFmpegAdapter(EncoderConfig(priority_nice=-5), 6000)
    with patch("subprocess.Popen", return_value=_fake_process()) as mock_popen, \
         patch("os.setpriority") as mock_prio:
        handle = adapter.start(Path("in.mkv"), tmp_path / "enc" / "out.mkv", STREAM_MAP)

    assert mock_popen.called
    assert handle.pid == 4242
    assert (tmp_path / "enc").is_dir()
    mock_prio.assert_called_once()
    assert mock_prio.call_args[0][1:] == (4242, -5)

def test_priority_failure_is_not_fatal(tmp_path):
    adapter = FFmpegAdapter(EncoderConfig(priority_nice=-10), 6000)
    with patch("subprocess.Popen", return_value=_fake_process()), \
         patch("os.setpriority", side_effect=PermissionError("not permitted")):
        handle = adapter.start(Path("in.mkv"), tmp_path / "out.mkv", STREAM_MAP)
    assert handle.pid == 4242

def test_start_missing_binary(tmp_path):
    adapter = FFmpegAdapter(EncoderConfig(priority_nice=None), 6000)
    with patch("subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
        with pytest.raises(TranscodeFailure, match="Could not start ffmpeg"):
            adapter.start(Path("in.mkv"), tmp_path / "out.mkv", STREAM_MAP)

def test_start_unusable_output_dir(tmp_path):
    blocker = tmp_path / "enc"
    blocker.write_text("not a directory")
    adapter = FFmpegAdapter(EncoderConfig(priority_nice=None), 6000)
    with patch("subprocess.Popen") as mock_popen:
        with pytest.raises(TranscodeFailure, match="Could not start ffmpeg"):
            adapter.start(Path("in.mkv"), blocker / "out.mkv", STREAM_MAP)
    mock_popen.assert_not_called()

def test_progress_parsed_from_output(tmp_path):
    lines = ["frame= 100 fps=10.0 time=00:01:05.50 bitrate= 100.0kbits/s speed=1.0x\n"]
    handle = _handle(tmp_path / "out.mkv", lines)
    handle.join_output()
    assert handle.progress_s == pytest.approx(65.5)
    assert "time=00:01:05.50" in handle.tail()

def test_interpret_success_renames_part(tmp_path):
    output = tmp_path / "out.mkv"
    adapter = FFmpegAdapter(EncoderConfig(), 6000)
    outcome = adapter.interpret(_handle(output, returncode=0, part_bytes=500))

    assert outcome.success is True
    assert outcome.rescued is False
    assert outcome.output_bytes == 500
    assert output.exists()
    assert not partial_path(output).exists()

def test_interpret_nonzero_exit_rescued(tmp_path):
    output = tmp_path / "out.mkv"
    adapter = FFmpegAdapter(EncoderConfig(min_output_bytes=100, min_runtime_s=5), 6000)
    outcome = adapter.interpret(_handle(output, returncode=1, part_bytes=500, elapsed=60))

    assert outcome.success is True
    assert outcome.rescued is True
    assert outcome.returncode == 1
    assert output.exists()

def test_interpret_nonzero_exit_rescue_disabled(tmp_path):
    output = tmp_path / "out.mkv"
    adapter = FFmpegAdapter(EncoderConfig(accept_nonzero_exit=False, min_output_bytes=100), 6000)
    outcome = adapter.interpret(_handle(output, ["Conversion failed!\n"], returncode=1, part_bytes=500))

    assert outcome.success is False
    assert "ffmpeg exited with code 1" in outcome.message
    assert "Conversion failed!" in outcome.message
    assert not output.exists()
    assert not partial_path(output).exists()

def test_interpret_small_output_fails(tmp_path):
    output = tmp_path / "out.mkv"
    adapter = FFmpegAdapter(EncoderConfig(min_output_bytes=1000, min_runtime_s=0), 6000)
    outcome = adapter.interpret(_handle(output, returncode=1, part_bytes=10))
    assert outcome.success is False
    assert not partial_path(output).exists()

def test_interpret_short_runtime_fails(tmp_path):
    output = tmp_path / "out.mkv"
    adapter = FFmpegAdapter(EncoderConfig(min_output_bytes=100, min_runtime_s=30), 6000)
    outcome = adapter.interpret(_handle(output, returncode=1, part_bytes=500, elapsed=2))
    assert outcome.success is False

def test_interpret_zero_exit_without_output(tmp_path):
    adapter = FFmpegAdapter(EncoderConfig(), 6000)
    outcome = adapter.interpret(_handle(tmp_path / "out.mkv", returncode=0))
    assert outcome.success is False
    assert "no output" in outcome.message

def test_terminate_running_process(tmp_path):
    handle = _handle(tmp_path / "out.mkv", returncode=None)
    handle.terminate()
    handle.process.terminate.assert_called_once()
    handle.process.wait.assert_called()

def test_terminate_finished_process_is_noop(tmp_path):
    handle = _handle(tmp_path / "out.mkv", returncode=0)
    handle.terminate()
    handle.process.terminate.assert_not_called()
