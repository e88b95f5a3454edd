import threading
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional
from wbc.domain.models import PipelineOutcome

class BatchState:
    """Thread-safe tally of one batch run."""

    def __init__(self):
        self._lock = threading.RLock()

        self.root: Optional[Path] = None
        self.total = 0
        self.concurrency = 1
        self.dry_run = False
        self.finished = False

        self.outcome_counts: Counter = Counter()
        self.warning_count = 0
        self.error_message_count = 0
        self.discovery_warnings: List[Path] = []

    def start(self, root: Path, total: int, concurrency: int, dry_run: bool):
        with self._lock:
            self.root = root
            self.total = total
            self.concurrency = concurrency
            self.dry_run = dry_run
            self.finished = False
            self.outcome_counts.clear()

    def finish(self):
        with self._lock:
            self.finished = True

    def record(self, outcome: PipelineOutcome):
        with self._lock:
            self.outcome_counts[outcome] += 1

    def record_message(self, level: str):
        with self._lock:
            if level == "warning":
                self.warning_count += 1
            elif level == "error":
                self.error_message_count += 1

    def add_discovery_warning(self, directory: Path):
        with self._lock:
            self.discovery_warnings.append(directory)
            self.warning_count += 1

    @property
    def processed_count(self) -> int:
        with self._lock:
            return sum(self.outcome_counts.values())

    @property
    def converted_count(self) -> int:
        with self._lock:
            return self.outcome_counts[PipelineOutcome.CONVERTED]

    @property
    def skipped_count(self) -> int:
        with self._lock:
            return sum(n for outcome, n in self.outcome_counts.items() if outcome.is_skip)

    @property
    def failed_count(self) -> int:
        with self._lock:
            return sum(n for outcome, n in self.outcome_counts.items() if outcome.is_error)

    def failures_by_kind(self) -> Dict[PipelineOutcome, int]:
        with self._lock:
            return {
                outcome: n
                for outcome, n in sorted(self.outcome_counts.items(), key=lambda i: i[0].value)
                if outcome.is_error and n
            }

    def summary_line(self) -> str:
        with self._lock:
            line = (
                f"Total: {self.processed_count}/{self.total} | Converted: {self.converted_count} | "
                f"Skipped: {self.skipped_count} | Failed: {self.failed_count}"
            )
            kinds = self.failures_by_kind()
            if kinds:
                line += " (" + ", ".join(f"{outcome.value}: {n}" for outcome, n in kinds.items()) + ")"
            return line
