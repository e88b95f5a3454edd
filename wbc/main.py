import typer
import logging
import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from rich.console import Console

from wbc.config.loader import load_config
from wbc.config.models import AppConfig
from wbc.infrastructure.logging import setup_logging
from wbc.infrastructure.event_bus import EventBus
from wbc.infrastructure.file_scanner import FileScanner
from wbc.infrastructure.ffprobe import FFprobeAdapter
from wbc.infrastructure.ffmpeg import FFmpegAdapter, check_tool
from wbc.pipeline.quality import QualityPolicy
from wbc.pipeline.converter import Converter
from wbc.pipeline.scheduler import Scheduler
from wbc.ui.state import BatchState
from wbc.ui.reporter import ProgressReporter
from wbc.ui.manager import UIManager
from wbc.domain.events import DiscoveryStarted, DiscoveryFinished

app = typer.Typer(help="WBC (WebM Batch Conversion) - convert a directory tree to WebM with ffmpeg")


def _fail(message: str, code: int = 1):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


@app.command()
def convert(
    directory: Path = typer.Argument(
        Path("."),
        help="Directory to convert recursively (default: current directory)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Scan and report only; no files are converted, deleted or moved"),
    parallel: Optional[int] = typer.Option(None, "--parallel", "-p", help="Number of files converted concurrently (default 1)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert every non-WebM file under DIRECTORY, quarantining files that fail."""
    if parallel is not None and parallel < 1:
        _fail("--parallel (-p) value must be a positive integer.")

    target_directory = directory.expanduser().resolve()
    if not target_directory.exists():
        _fail(f"Directory not found - {target_directory}")
    if not target_directory.is_dir():
        _fail(f"Provided path is not a directory - {target_directory}")

    try:
        config = load_config(config_path) if config_path else AppConfig()
    except FileNotFoundError as exc:
        _fail(str(exc))
    except (ValidationError, yaml.YAMLError, ValueError) as exc:
        _fail(f"Invalid config {config_path}: {exc}")

    # Apply CLI overrides
    if parallel is not None: config.general.parallel = parallel
    if dry_run: config.general.dry_run = True
    if log_path is not None: config.general.log_path = str(log_path)
    if debug: config.general.debug = True

    try:
        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(log_path_value, debug=config.general.debug)
        logger.info(
            f"WBC started: target={target_directory}, parallel={config.general.parallel}, "
            f"dry_run={config.general.dry_run}, debug={config.general.debug}"
        )

        typer.secho(f"Target directory: {target_directory}", fg=typer.colors.BLUE)
        typer.secho(f"Parallel processes: {config.general.parallel}", fg=typer.colors.BLUE)
        if config.general.dry_run:
            typer.secho("--- DRY RUN MODE ---", fg=typer.colors.YELLOW)

        for tool in (config.tools.ffmpeg, config.tools.ffprobe):
            typer.echo(f"Checking for {tool}...")
            if not check_tool(tool):
                _fail(f"Could not execute {tool}. Please ensure it's installed and in your system's PATH.")
            typer.secho(f"{tool} found.", fg=typer.colors.GREEN)

        bus = EventBus()
        state = BatchState()
        reporter = ProgressReporter(Console(highlight=False))
        UIManager(bus, state, reporter)

        scanner = FileScanner(
            target_extension=config.general.target_extension,
            include_extensions=config.general.extensions,
            event_bus=bus,
        )
        ffprobe = FFprobeAdapter(event_bus=bus, executable=config.tools.ffprobe)
        shutdown_event = threading.Event()
        ffmpeg = FFmpegAdapter(config.encoder, executable=config.tools.ffmpeg, debug=config.general.debug)
        scheduler = Scheduler(
            config=config,
            event_bus=bus,
            ffprobe_adapter=ffprobe,
            quality_policy=QualityPolicy(config.quality, event_bus=bus),
            converter=Converter(config, bus, ffmpeg, shutdown_event=shutdown_event),
            shutdown_event=shutdown_event,
        )

        bus.publish(DiscoveryStarted(directory=target_directory))
        tasks = list(scanner.scan(target_directory))
        bus.publish(DiscoveryFinished(directory=target_directory, files_found=len(tasks)))
        logger.info(f"Discovery finished: found={len(tasks)}")

        if not tasks and not config.general.dry_run:
            typer.secho("No files need conversion.", fg=typer.colors.GREEN)
            return

        scheduler.run(tasks, config.general.parallel, config.general.dry_run, root=target_directory)
        typer.secho("Conversion process finished.", fg=typer.colors.GREEN)

    except KeyboardInterrupt:
        typer.secho("\nConversion stopped by user (Ctrl+C)", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except Exception as e:
        logging.getLogger(__name__).exception("Fatal error during processing")
        typer.secho(f"\nFatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

if __name__ == "__main__":
    app()
