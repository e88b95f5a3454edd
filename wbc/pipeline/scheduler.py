"""Bounded-concurrency scheduler for the per-file conversion pipeline.

Runs inspect → decide → convert for every discovered file on a fixed-size
worker pool and reports each terminal outcome through the EventBus.

Key responsibilities:
- Admit tasks strictly in discovery order, never more than `concurrency` at once
- Run each task's pipeline sequentially on one worker thread
- Turn any failure inside a pipeline into a terminal PipelineOutcome
- Return only when the queue is empty and nothing is in flight
"""

import concurrent.futures
import logging
import threading
import time
from collections import Counter, deque
from pathlib import Path
from typing import Deque, Dict, List, Optional, Sequence, Set

from wbc.config.models import AppConfig
from wbc.domain.events import BatchFinished, BatchStarted, ConsoleMessage, TaskFinished, TaskStarted
from wbc.domain.models import FileTask, PipelineOutcome
from wbc.infrastructure.event_bus import EventBus
from wbc.infrastructure.ffprobe import FFprobeAdapter
from wbc.pipeline.converter import Converter
from wbc.pipeline.quality import QualityPolicy


class SchedulerState:
    """Queue, in-flight set and outcomes of one batch, behind a single Condition.

    Workers call complete(); the admission loop calls admit() and
    wait_for_progress(). All mutation happens under the same lock, so the
    drained check can never race with a completion.
    """

    def __init__(self, tasks: Sequence[FileTask], limit: int):
        self._cond = threading.Condition()
        self.limit = limit
        self.pending: Deque[FileTask] = deque(tasks)
        self.in_flight: Set[FileTask] = set()
        self.outcomes: Dict[FileTask, PipelineOutcome] = {}
        self.processed = 0
        self.peak_in_flight = 0

    def _can_admit(self) -> bool:
        return bool(self.pending) and len(self.in_flight) < self.limit

    def admit(self) -> Optional[FileTask]:
        """Pops the next pending task if a slot is free, else returns None."""
        with self._cond:
            if not self._can_admit():
                return None
            task = self.pending.popleft()
            self.in_flight.add(task)
            self.peak_in_flight = max(self.peak_in_flight, len(self.in_flight))
            return task

    def complete(self, task: FileTask, outcome: PipelineOutcome):
        with self._cond:
            self.in_flight.discard(task)
            self.outcomes[task] = outcome
            self.processed += 1
            self._cond.notify_all()

    def is_drained(self) -> bool:
        with self._cond:
            return not self.pending and not self.in_flight

    def cancel_pending(self) -> int:
        """Drops every task that has not been admitted yet; returns how many."""
        with self._cond:
            dropped = len(self.pending)
            self.pending.clear()
            self._cond.notify_all()
            return dropped

    def wait_for_progress(self):
        """Blocks until a slot frees up or the batch is drained."""
        with self._cond:
            self._cond.wait_for(lambda: self._can_admit() or (not self.pending and not self.in_flight))


class Scheduler:
    """Runs the conversion pipeline over a list of FileTasks.

    Args:
        config: AppConfig (debug flag, default concurrency).
        event_bus: EventBus for batch and task lifecycle events.
        ffprobe_adapter: FFprobeAdapter used as the media inspector.
        quality_policy: QualityPolicy mapping media summaries to CRF.
        converter: Converter that encodes and cleans up one file.
        shutdown_event: Shared with the Converter; set on Ctrl+C.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        ffprobe_adapter: FFprobeAdapter,
        quality_policy: QualityPolicy,
        converter: Converter,
        shutdown_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.ffprobe_adapter = ffprobe_adapter
        self.quality_policy = quality_policy
        self.converter = converter
        self.shutdown_event = shutdown_event or threading.Event()
        self.logger = logging.getLogger(__name__)
        self._state: Optional[SchedulerState] = None

    @property
    def state(self) -> Optional[SchedulerState]:
        return self._state

    def _run_pipeline(self, task: FileTask, dry_run: bool) -> PipelineOutcome:
        self.event_bus.publish(TaskStarted(task=task))
        summary = self.ffprobe_adapter.inspect(task.path)
        crf = self.quality_policy.decide(summary)
        return self.converter.convert(task, crf, dry_run)

    def _process_task(self, task: FileTask, dry_run: bool):
        """Worker body: always ends with exactly one TaskFinished and one complete()."""
        filename = task.path.name
        start_time = time.monotonic() if self.config.general.debug else None
        if self.config.general.debug:
            self.logger.info(f"PROCESS_START: {filename} (thread {threading.get_ident()})")

        outcome = PipelineOutcome.ERROR_UNEXPECTED
        try:
            outcome = self._run_pipeline(task, dry_run)
        except Exception as e:
            self.logger.exception(f"Unexpected error processing file {filename}")
            try:
                self.event_bus.publish(ConsoleMessage(
                    level="error",
                    message=f"Unexpected error processing file {filename}: {e}",
                ))
            except Exception:
                self.logger.exception(f"Failed to report error for {filename}")
            outcome = PipelineOutcome.ERROR_UNEXPECTED
        finally:
            try:
                self.event_bus.publish(TaskFinished(task=task, outcome=outcome))
            except Exception:
                self.logger.exception(f"Progress update failed for {filename}")
            finally:
                self._state.complete(task, outcome)

        if self.config.general.debug and start_time:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"PROCESS_END: {filename} status={outcome.value} elapsed={elapsed:.2f}s")

    def request_shutdown(self):
        """Stops admitting tasks and interrupts running encodes."""
        self.shutdown_event.set()
        dropped = self._state.cancel_pending() if self._state else 0
        self.logger.info(f"Shutdown requested: {dropped} pending file(s) dropped")
        self.event_bus.publish(ConsoleMessage(
            level="warning",
            message="Ctrl+C - interrupting active conversions...",
        ))

    def run(
        self,
        tasks: Sequence[FileTask],
        concurrency: Optional[int] = None,
        dry_run: bool = False,
        root: Optional[Path] = None,
    ) -> Dict[FileTask, PipelineOutcome]:
        """Processes every task and returns their outcomes in discovery order."""
        if concurrency is None:
            concurrency = self.config.general.parallel
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency!r}")

        tasks: List[FileTask] = list(tasks)
        if root is None:
            root = tasks[0].root if tasks else Path(".")
        self._state = state = SchedulerState(tasks, concurrency)
        if not dry_run:
            self.converter.reserve(tasks)

        self.logger.info(f"Batch started: files={len(tasks)}, concurrency={concurrency}, dry_run={dry_run}")
        self.event_bus.publish(BatchStarted(root=root, total=len(tasks), concurrency=concurrency, dry_run=dry_run))

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix="wbc-worker"
        ) as executor:
            try:
                while True:
                    task = state.admit()
                    while task is not None:
                        executor.submit(self._process_task, task, dry_run)
                        task = state.admit()
                    if state.is_drained():
                        break
                    state.wait_for_progress()
            except KeyboardInterrupt:
                # Workers must see the flag before the executor joins them
                self.request_shutdown()
                raise

        outcomes = {task: state.outcomes[task] for task in tasks}
        counts = dict(Counter(outcomes.values()))
        self.logger.info(
            "Batch finished: "
            + ", ".join(f"{outcome.value}={count}" for outcome, count in sorted(counts.items(), key=lambda i: i[0].value))
        )
        self.event_bus.publish(BatchFinished(counts=counts))
        return outcomes
