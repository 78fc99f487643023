import typer
import shutil
import signal
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, List

from rich.console import Console
from rich.table import Table

from vtq.config.loader import load_config
from vtq.config.models import AppConfig
from vtq.domain.errors import FatalStartupError
from vtq.infrastructure.logging import setup_logging
from vtq.infrastructure.event_bus import EventBus
from vtq.infrastructure.file_scanner import FileScanner
from vtq.infrastructure.readiness import ReadinessGate
from vtq.infrastructure.ffprobe import FFprobeAdapter
from vtq.infrastructure.ffmpeg import FFmpegAdapter
from vtq.infrastructure.housekeeping import HousekeepingService
from vtq.infrastructure.instance_lock import SingleInstanceGuard, lock_name_for_config
from vtq.infrastructure.job_queue import DurableJobQueue
from vtq.infrastructure.progress import ProgressReporter, load_snapshot
from vtq.infrastructure.skip_log import SkipAuditLog
from vtq.infrastructure.transfer import TransferService
from vtq.pipeline.classifier import CodecClassifier
from vtq.pipeline.coordinator import Coordinator

app = typer.Typer(help="VTQ (Video Transcode Queue) - watch, triage, re-encode, upload")
console = Console()

DEFAULT_CONFIG = Path("conf/vtq.yaml")


def check_prerequisites(config: AppConfig) -> List[Path]:
    """Validates startup requirements; raises FatalStartupError, mutates nothing."""
    if not config.paths.watch_roots:
        raise FatalStartupError("No watch_roots configured.")
    roots = [Path(p) for p in config.paths.watch_roots]
    for root in roots:
        if not root.is_dir():
            raise FatalStartupError(f"Watch root does not exist or is not a directory: {root}")
    for binary in (config.encoder.ffmpeg_bin, config.encoder.ffprobe_bin):
        if shutil.which(binary) is None:
            raise FatalStartupError(f"Required binary not found: {binary}")
    return roots


def build_coordinator(config: AppConfig, bus: EventBus) -> Coordinator:
    paths = config.paths
    staging = [Path(paths.download_dir), Path(paths.encode_dir)]
    scanner = FileScanner(
        extensions=config.general.extensions,
        min_size_bytes=config.general.min_size_bytes,
        category_dirs=paths.category_dirs,
        default_category=paths.default_category,
        exclude_dirs=staging + [Path(paths.state_dir), Path(paths.destination_root)],
    )
    ffprobe = FFprobeAdapter(binary=config.encoder.ffprobe_bin, timeout_s=config.encoder.probe_timeout_s)
    return Coordinator(
        config=config,
        event_bus=bus,
        queue=DurableJobQueue(paths.queue_file, config.queue),
        file_scanner=scanner,
        readiness_gate=ReadinessGate(config.general.min_age_s, config.general.stability_wait_s),
        classifier=CodecClassifier(config.triage, ffprobe, SkipAuditLog(paths.skip_log_file)),
        transfer=TransferService(),
        ffprobe_adapter=ffprobe,
        ffmpeg_adapter=FFmpegAdapter(config.encoder, config.triage.target_bitrate_kbps),
    )


@app.command()
def run(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    once: bool = typer.Option(False, "--once", help="Exit once nothing is eligible and no job is in flight"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Watch the configured roots and run the transcode pipeline."""
    try:
        config = load_config(config_path)
        if debug: config.general.debug = True
        if log_path is not None: config.general.log_path = str(log_path)

        check_prerequisites(config)

        state_dir = Path(config.paths.state_dir)
        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(state_dir, debug=config.general.debug, log_path=log_path_value, console=True)
        logger.info(f"VTQ started: watch_roots={config.paths.watch_roots}")
        logger.info(
            f"Config: download_buffer={config.general.download_buffer}, "
            f"transcode_slots={config.general.transcode_slots}, "
            f"target={config.triage.target_bitrate_kbps}kbps x{config.triage.threshold_multiplier}, "
            f"poll={config.general.poll_interval_s}s"
        )

        guard = SingleInstanceGuard(lock_name_for_config(config_path), config.paths.lock_dir)
        with guard:
            housekeeper = HousekeepingService()
            for staging_dir in (Path(config.paths.download_dir), Path(config.paths.encode_dir)):
                staging_dir.mkdir(parents=True, exist_ok=True)
                removed = housekeeper.cleanup_partial_files(staging_dir)
                if removed:
                    logger.info(f"Housekeeping: removed {removed} partial files from {staging_dir}")

            bus = EventBus()
            reporter = ProgressReporter(config.paths.progress_file, bus)
            coordinator = build_coordinator(config, bus)

            stop_event = threading.Event()

            def _request_stop(signum, _frame):
                logger.info(f"Signal {signum} received - stopping after current cycle")
                stop_event.set()

            previous = {sig: signal.signal(sig, _request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}
            try:
                coordinator.run(stop_event, until_idle=once)
            finally:
                for sig, handler in previous.items():
                    signal.signal(sig, handler)
                reporter.close()

    except FatalStartupError as e:
        typer.secho(f"Fatal: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    except typer.Exit:
        raise

    except Exception as e:
        with open("error.log", "a") as f:
            import traceback
            traceback.print_exc(file=f)
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _fmt_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


@app.command()
def status(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Show the latest progress snapshot."""
    try:
        config = load_config(config_path)
    except FatalStartupError as e:
        typer.secho(f"Fatal: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    snapshot = load_snapshot(config.paths.progress_file)
    if snapshot is None:
        typer.secho("No progress snapshot yet.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=0)

    table = Table(title=f"VTQ status (updated {_fmt_time(snapshot.updated_at)})")
    table.add_column("Item", style="cyan")
    table.add_column("Value")
    table.add_row("Encoded", str(snapshot.encoded))
    table.add_row("Skipped", str(snapshot.skipped))
    table.add_row("Failed", str(snapshot.failed))
    table.add_row("Current", f"{snapshot.current_file or '-'} ({snapshot.current_stage or 'idle'})")
    for path, stage in sorted(snapshot.active.items()):
        table.add_row(f"  {stage}", path)
    for label, pointer in (
        ("Last completed", snapshot.last_completed),
        ("Last skipped", snapshot.last_skipped),
        ("Last failed", snapshot.last_failed),
    ):
        if pointer:
            table.add_row(label, f"{pointer.path} [{pointer.reason}] @ {_fmt_time(pointer.at)}")
        else:
            table.add_row(label, "-")
    console.print(table)


@app.command("queue")
def show_queue(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """List durable queue entries."""
    try:
        config = load_config(config_path)
    except FatalStartupError as e:
        typer.secho(f"Fatal: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    entries = DurableJobQueue(config.paths.queue_file, config.queue).entries()
    if not entries:
        typer.secho("Queue is empty.", fg=typer.colors.YELLOW)
        return

    active = sum(1 for entry in entries.values() if entry.status.is_active)
    table = Table(title=f"VTQ queue ({len(entries)} entries, {active} active)")
    table.add_column("Status", style="cyan")
    table.add_column("Updated")
    table.add_column("Path")
    table.add_column("Details")
    for path, entry in sorted(entries.items(), key=lambda item: item[1].updated_at, reverse=True):
        style = "yellow" if entry.status.is_active else None
        table.add_row(entry.status.value, _fmt_time(entry.updated_at), path, entry.details, style=style)
    console.print(table)


if __name__ == "__main__":
    app()
