import threading
from pathlib import Path
from typing import Optional
from rich.console import Console
from rich.text import Text
from wbc.domain.models import FileTask, PipelineOutcome

OUTCOME_STYLES = {
    PipelineOutcome.CONVERTED: "green",
    PipelineOutcome.SKIPPED_EXISTS: "blue",
    PipelineOutcome.SKIPPED_DRY_RUN: "grey50",
}

MESSAGE_STYLES = {
    "info": "blue",
    "warning": "yellow",
    "error": "red",
}


class ProgressReporter:
    """Single live status line shared by all workers.

    The terminal is a single-writer resource: every write (progress line,
    warnings, errors, final tally) happens under one lock.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(highlight=False)
        self._lock = threading.Lock()
        self.total = 0
        self.processed = 0
        self.root_name = ""
        self._last_length = 0

    def start(self, root: Path, total: int):
        with self._lock:
            self.root_name = Path(root).name or str(root)
            self.total = total
            self.processed = 0
            self._last_length = 0

    def _percentage(self) -> int:
        if self.total <= 0:
            return 0
        return int(self.processed * 100 / self.total + 0.5)

    def _render(self, task: FileTask, outcome: PipelineOutcome) -> Text:
        line = Text()
        line.append(self.root_name, style="blue")
        line.append(": [")
        line.append(str(self.processed), style="cyan")
        line.append("/")
        line.append(str(self.total), style="cyan")
        line.append("] ")
        line.append(f"{self._percentage()}%", style="yellow")
        line.append(" ")
        line.append(outcome.glyph, style=OUTCOME_STYLES.get(outcome, "red"))
        line.append(" ")
        line.append(str(task.relative_path), style="grey50")
        return line

    def _end_live_line(self):
        if self._last_length:
            self.console.file.write("\n")
            self._last_length = 0

    def report(self, task: FileTask, outcome: PipelineOutcome) -> str:
        """Counts one finished task and redraws the status line in place."""
        with self._lock:
            self.processed += 1
            line = self._render(task, outcome)

            self.console.file.write(f"\r{' ' * self._last_length}\r")
            self.console.print(line, end="", soft_wrap=True)
            self._last_length = line.cell_len

            # Keep the finished line; error text from lower layers sits right below it
            if outcome.is_error:
                self._end_live_line()
            self.console.file.flush()
            return line.plain

    def message(self, level: str, text: str, detail: Optional[str] = None):
        """Prints a warning/error on its own line, below the current status line."""
        with self._lock:
            self._end_live_line()
            self.console.print(Text(text, style=MESSAGE_STYLES.get(level, "")), soft_wrap=True)
            if detail:
                self.console.print(Text(detail, style="grey50"), soft_wrap=True)
            self.console.file.flush()

    def finish(self, summary: str):
        with self._lock:
            self._end_live_line()
            self.console.print(Text(summary, style="bold"), soft_wrap=True)
            self.console.file.flush()
