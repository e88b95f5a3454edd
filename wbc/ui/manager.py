import logging
from wbc.infrastructure.event_bus import EventBus
from wbc.ui.state import BatchState
from wbc.ui.reporter import ProgressReporter
from wbc.domain.events import (
    BatchStarted, BatchFinished, ConsoleMessage,
    DiscoveryStarted, DiscoveryFinished, DiscoveryWarning,
    TaskFinished,
)

class UIManager:
    """Subscribes to EventBus and updates BatchState and the console reporter."""

    def __init__(self, bus: EventBus, state: BatchState, reporter: ProgressReporter):
        self.bus = bus
        self.state = state
        self.reporter = reporter
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(DiscoveryStarted, self.on_discovery_started)
        self.bus.subscribe(DiscoveryWarning, self.on_discovery_warning)
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(BatchStarted, self.on_batch_started)
        self.bus.subscribe(TaskFinished, self.on_task_finished)
        self.bus.subscribe(ConsoleMessage, self.on_console_message)
        self.bus.subscribe(BatchFinished, self.on_batch_finished)

    def on_discovery_started(self, event: DiscoveryStarted):
        self.reporter.message("info", f"Scanning directory: {event.directory}...")

    def on_discovery_warning(self, event: DiscoveryWarning):
        self.state.add_discovery_warning(event.directory)
        self.reporter.message("warning", f"Error scanning directory {event.directory}: {event.error_message}")

    def on_discovery_finished(self, event: DiscoveryFinished):
        self.reporter.message("info", f"Found {event.files_found} file(s) potentially needing conversion.")

    def on_batch_started(self, event: BatchStarted):
        self.state.start(event.root, event.total, event.concurrency, event.dry_run)
        self.reporter.start(event.root, event.total)

    def on_task_finished(self, event: TaskFinished):
        self.state.record(event.outcome)
        self.reporter.report(event.task, event.outcome)

    def on_console_message(self, event: ConsoleMessage):
        self.state.record_message(event.level)
        self.reporter.message(event.level, event.message, event.detail)

    def on_batch_finished(self, event: BatchFinished):
        self.state.finish()
        summary = self.state.summary_line()
        self.logger.info(f"Summary: {summary}")
        self.reporter.finish(summary)
