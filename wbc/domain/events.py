"""Domain events for the conversion pipeline.

Events represent state changes and notifications that flow through the EventBus,
decoupling the scheduler and its adapters from the console layer. Worker threads
publish them directly, so subscribers must be safe to call concurrently.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Dict, Optional
from pydantic import BaseModel, Field
from .models import FileTask, PipelineOutcome


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class TaskEvent(Event):
    """Base class for events related to a single file task."""

    task: FileTask


class TaskStarted(TaskEvent):
    """Emitted when a worker picks up a task."""

    pass


class TaskFinished(TaskEvent):
    """Emitted exactly once per task, after its pipeline reached a terminal outcome."""

    outcome: PipelineOutcome


class DiscoveryStarted(Event):
    """Emitted when file discovery begins."""

    directory: Path


class DiscoveryWarning(Event):
    """Emitted when a directory cannot be read during discovery."""

    directory: Path
    error_message: str


class DiscoveryFinished(Event):
    """Emitted after discovery with the number of files queued for conversion."""

    directory: Path
    files_found: int


class BatchStarted(Event):
    """Emitted by the scheduler before the first task is admitted."""

    root: Path
    total: int
    concurrency: int
    dry_run: bool = False


class BatchFinished(Event):
    """Emitted once the queue is drained and nothing is in flight."""

    counts: Dict[PipelineOutcome, int] = Field(default_factory=dict)


class ConsoleMessage(Event):
    """Warning or error text that must appear on its own console line.

    `detail` carries multi-line diagnostics (e.g. captured ffmpeg stderr).
    """

    level: str = "info"  # info, warning, error
    message: str
    detail: Optional[str] = None
