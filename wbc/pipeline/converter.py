import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional

from wbc.config.models import AppConfig
from wbc.domain.events import ConsoleMessage
from wbc.domain.models import FileTask, PipelineOutcome
from wbc.infrastructure.event_bus import EventBus
from wbc.infrastructure.ffmpeg import FFmpegAdapter
from wbc.pipeline.quarantine import move_to_quarantine


class Converter:
    """Runs one encode and the cleanup that follows it.

    convert() always returns a PipelineOutcome; nothing raised inside the
    encode or the cleanup escapes to the scheduler.

    Args:
        config: AppConfig (target extension, quarantine prefix, stderr tail size).
        event_bus: EventBus for console messages.
        ffmpeg_adapter: FFmpegAdapter that spawns the encoder.
        shutdown_event: Set on Ctrl+C; running encodes are stopped and their
            sources are left in place.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        ffmpeg_adapter: FFmpegAdapter,
        shutdown_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.ffmpeg_adapter = ffmpeg_adapter
        self.shutdown_event = shutdown_event or threading.Event()
        self.logger = logging.getLogger(__name__)
        # output path -> the task allowed to write it
        self._owners: Dict[Path, FileTask] = {}

    def output_path_for(self, task: FileTask) -> Path:
        return task.path.with_name(f"{task.path.stem}{self.config.general.target_extension}")

    def reserve(self, tasks: Iterable[FileTask]):
        """Assigns every output path to the first task, in discovery order, that maps to it.

        Called once per batch before any worker starts, so siblings such as
        clip.mov and clip.mp4 never encode into the same clip.webm.
        """
        owners: Dict[Path, FileTask] = {}
        for task in tasks:
            owners.setdefault(self.output_path_for(task), task)
        self._owners = owners

    def _notify(self, level: str, message: str, detail: Optional[str] = None):
        self.event_bus.publish(ConsoleMessage(level=level, message=message, detail=detail))

    def _stderr_tail(self, stderr: Optional[str]) -> str:
        lines = (stderr or "").strip().splitlines()
        limit = self.config.general.stderr_tail_lines
        if not lines or limit == 0:
            return "No stderr captured."
        return "\n".join(lines[-limit:])

    def _remove_partial_output(self, output_path: Path):
        try:
            if output_path.exists():
                output_path.unlink()
                self.logger.info(f"Removed incomplete output {output_path.name}")
        except OSError as e:
            self.logger.warning(f"Failed to delete incomplete output {output_path.name}: {e}")
            self._notify("warning", f"Failed to delete incomplete output {output_path.name}: {e}")

    def _quarantine(self, task: FileTask):
        moved_to = move_to_quarantine(task, self.config.general.failed_dir_prefix, logger=self.logger)
        if moved_to is not None:
            self._notify("warning", f"Moved failed file to: {moved_to}")

    def _handle_failure(self, task: FileTask, output_path: Path, outcome: PipelineOutcome) -> PipelineOutcome:
        self._remove_partial_output(output_path)
        if self.shutdown_event.is_set():
            # Interrupted encodes say nothing about the source
            self.logger.info(f"INTERRUPTED: {task.path.name} left in place")
            return outcome
        self._quarantine(task)
        return outcome

    def convert(self, task: FileTask, crf: int, dry_run: bool = False) -> PipelineOutcome:
        filename = task.path.name
        try:
            output_path = self.output_path_for(task)

            if dry_run:
                self.logger.debug(f"DRY_RUN: {filename} -> {output_path.name} (crf={crf})")
                return PipelineOutcome.SKIPPED_DRY_RUN

            owner = self._owners.get(output_path)
            if owner is not None and owner != task:
                self.logger.info(f"SKIP_EXISTS: {output_path} is reserved for {owner.path.name}")
                return PipelineOutcome.SKIPPED_EXISTS

            if output_path.exists():
                self.logger.info(f"SKIP_EXISTS: {output_path}")
                return PipelineOutcome.SKIPPED_EXISTS

            try:
                result = self.ffmpeg_adapter.encode(
                    task.path, output_path, crf, shutdown_event=self.shutdown_event
                )
            except OSError as e:
                self.logger.error(f"FFmpeg spawn error for {filename}: {e}")
                self._notify("error", f"FFmpeg spawn error for {filename}: {e}")
                return self._handle_failure(task, output_path, PipelineOutcome.ERROR_SPAWNING)

            if result.returncode != 0:
                if self.shutdown_event.is_set():
                    self.logger.warning(f"FFmpeg interrupted for {filename} (code: {result.returncode})")
                    self._notify("warning", f"Conversion of {filename} interrupted; original kept.")
                    return self._handle_failure(task, output_path, PipelineOutcome.ERROR_CONVERTING)
                tail = self._stderr_tail(result.stderr)
                self.logger.error(f"FFmpeg conversion failed for {filename} (code: {result.returncode}):\n{tail}")
                self._notify("error", f"FFmpeg conversion failed for {filename} (code: {result.returncode}):", detail=tail)
                return self._handle_failure(task, output_path, PipelineOutcome.ERROR_CONVERTING)

            try:
                task.path.unlink()
            except OSError as e:
                # Output is valid; source stays in place, no quarantine
                self.logger.error(f"Converted successfully, but failed to delete original {filename}: {e}")
                self._notify("error", f"Converted successfully, but failed to delete original {filename}: {e}")
                return PipelineOutcome.ERROR_DELETING_SOURCE

            self.logger.info(f"CONVERTED: {task.path} -> {output_path.name} (crf={crf})")
            return PipelineOutcome.CONVERTED

        except Exception as e:
            self.logger.exception(f"Unexpected error during FFmpeg processing for {filename}")
            self._notify("error", f"Unexpected error during FFmpeg processing for {filename}: {e}")
            return PipelineOutcome.ERROR_UNEXPECTED
