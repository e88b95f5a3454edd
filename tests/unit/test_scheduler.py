"""Unit tests for Scheduler admission, bounding and outcome handling."""
import threading
import pytest
from pathlib import Path
from unittest.mock import MagicMock
from wbc.config.models import AppConfig
from wbc.domain.events import BatchFinished, BatchStarted, ConsoleMessage, TaskFinished, TaskStarted
from wbc.domain.models import FileTask, PipelineOutcome
from wbc.infrastructure.event_bus import EventBus
from wbc.pipeline.scheduler import Scheduler, SchedulerState


def make_tasks(n, root=Path("/media")):
    return [FileTask(path=root / f"{i:02d}.mp4", root=root) for i in range(n)]


class RecordingConverter:
    """Converter stand-in that records call order and overlap."""

    def __init__(self, outcome=PipelineOutcome.CONVERTED, gate=None):
        self.outcome = outcome
        self.gate = gate
        self.order = []
        self.reserved = None
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def reserve(self, tasks):
        self.reserved = [t.path.name for t in tasks]

    def convert(self, task, crf, dry_run=False):
        with self._lock:
            self.order.append(task.path.name)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            return PipelineOutcome.SKIPPED_DRY_RUN if dry_run else self.outcome
        finally:
            with self._lock:
                self.active -= 1


def make_scheduler(converter, bus=None, inspector=None, policy=None, config=None):
    inspector = inspector or MagicMock(**{"inspect.return_value": None})
    policy = policy or MagicMock(**{"decide.return_value": 24})
    return Scheduler(
        config=config or AppConfig(),
        event_bus=bus or EventBus(),
        ffprobe_adapter=inspector,
        quality_policy=policy,
        converter=converter,
    )


@pytest.mark.parametrize("bad", [0, -1, True, 1.5, "2"])
def test_run_rejects_invalid_concurrency(bad):
    converter = RecordingConverter()
    scheduler = make_scheduler(converter)
    with pytest.raises(ValueError):
        scheduler.run(make_tasks(2), concurrency=bad)
    assert converter.order == []


def test_run_empty_batch_returns_immediately():
    bus = EventBus()
    events = []
    bus.subscribe(BatchStarted, events.append)
    bus.subscribe(BatchFinished, events.append)

    result = make_scheduler(RecordingConverter(), bus=bus).run([], concurrency=3, root=Path("/media"))

    assert result == {}
    assert isinstance(events[0], BatchStarted) and events[0].total == 0
    assert isinstance(events[1], BatchFinished) and events[1].counts == {}


def test_run_sequential_preserves_discovery_order():
    converter = RecordingConverter()
    tasks = make_tasks(6)

    result = make_scheduler(converter).run(tasks, concurrency=1)

    assert converter.order == [t.path.name for t in tasks]
    assert list(result) == tasks
    assert set(result.values()) == {PipelineOutcome.CONVERTED}
    assert converter.max_active == 1


@pytest.mark.parametrize("limit", [1, 2, 3, 5])
def test_run_never_exceeds_limit(limit):
    converter = RecordingConverter()
    tasks = make_tasks(12)

    scheduler = make_scheduler(converter)
    result = scheduler.run(tasks, concurrency=limit)

    assert len(result) == 12
    assert converter.max_active <= limit
    assert scheduler.state.peak_in_flight <= limit
    assert scheduler.state.is_drained()
    assert scheduler.state.processed == 12


def test_run_fills_all_slots():
    gate = threading.Event()
    converter = RecordingConverter(gate=gate)
    tasks = make_tasks(4)
    scheduler = make_scheduler(converter)

    started = threading.Semaphore(0)
    bus = scheduler.event_bus
    bus.subscribe(TaskStarted, lambda e: started.release())

    runner = threading.Thread(target=scheduler.run, args=(tasks,), kwargs={"concurrency": 2})
    runner.start()
    assert started.acquire(timeout=5)
    assert started.acquire(timeout=5)
    # Third task must wait for a slot
    assert not started.acquire(timeout=0.2)
    gate.set()
    runner.join(timeout=5)

    assert not runner.is_alive()
    assert converter.max_active == 2


def test_default_concurrency_comes_from_config():
    config = AppConfig(general={"parallel": 3})
    converter = RecordingConverter()
    scheduler = make_scheduler(converter, config=config)

    scheduler.run(make_tasks(5))

    assert scheduler.state.limit == 3


def test_pipeline_runs_inspect_decide_convert():
    inspector = MagicMock()
    inspector.inspect.return_value = "summary"
    policy = MagicMock()
    policy.decide.return_value = 20
    converter = MagicMock()
    converter.convert.return_value = PipelineOutcome.CONVERTED
    task = make_tasks(1)[0]

    make_scheduler(converter, inspector=inspector, policy=policy).run([task], concurrency=1)

    inspector.inspect.assert_called_once_with(task.path)
    policy.decide.assert_called_once_with("summary")
    converter.convert.assert_called_once_with(task, 20, False)


def test_dry_run_is_forwarded():
    converter = RecordingConverter()
    result = make_scheduler(converter).run(make_tasks(3), concurrency=2, dry_run=True)
    assert set(result.values()) == {PipelineOutcome.SKIPPED_DRY_RUN}


def test_unexpected_exception_becomes_terminal_outcome():
    converter = MagicMock()
    converter.convert.side_effect = [PipelineOutcome.CONVERTED, KeyError("boom"), PipelineOutcome.CONVERTED]
    bus = EventBus()
    finished = []
    bus.subscribe(TaskFinished, finished.append)
    tasks = make_tasks(3)

    result = make_scheduler(converter, bus=bus).run(tasks, concurrency=1)

    assert result[tasks[1]] == PipelineOutcome.ERROR_UNEXPECTED
    assert result[tasks[0]] == PipelineOutcome.CONVERTED
    assert result[tasks[2]] == PipelineOutcome.CONVERTED
    assert [e.task for e in finished] == tasks


def test_failing_subscriber_does_not_stall_batch():
    bus = EventBus()

    def broken(event):
        raise RuntimeError("display gone")

    bus.subscribe(TaskFinished, broken)
    tasks = make_tasks(4)

    result = make_scheduler(RecordingConverter(), bus=bus).run(tasks, concurrency=2)

    assert len(result) == 4


def test_task_finished_published_exactly_once_per_task():
    bus = EventBus()
    finished = []
    lock = threading.Lock()

    def on_finished(event):
        with lock:
            finished.append(event.task)

    bus.subscribe(TaskFinished, on_finished)
    tasks = make_tasks(20)

    make_scheduler(RecordingConverter(), bus=bus).run(tasks, concurrency=4)

    assert sorted(t.path.name for t in finished) == [t.path.name for t in tasks]


def test_batch_finished_counts():
    converter = MagicMock()
    converter.convert.side_effect = [
        PipelineOutcome.CONVERTED,
        PipelineOutcome.ERROR_CONVERTING,
        PipelineOutcome.CONVERTED,
    ]
    bus = EventBus()
    done = []
    bus.subscribe(BatchFinished, done.append)

    make_scheduler(converter, bus=bus).run(make_tasks(3), concurrency=1)

    assert done[0].counts == {PipelineOutcome.CONVERTED: 2, PipelineOutcome.ERROR_CONVERTING: 1}


class TestSchedulerState:
    def test_admit_respects_limit_and_order(self):
        tasks = make_tasks(3)
        state = SchedulerState(tasks, limit=2)

        assert state.admit() == tasks[0]
        assert state.admit() == tasks[1]
        assert state.admit() is None

        state.complete(tasks[0], PipelineOutcome.CONVERTED)
        assert state.admit() == tasks[2]
        assert state.peak_in_flight == 2

    def test_drained_only_when_nothing_left(self):
        tasks = make_tasks(1)
        state = SchedulerState(tasks, limit=1)
        assert not state.is_drained()
        state.admit()
        assert not state.is_drained()
        state.complete(tasks[0], PipelineOutcome.CONVERTED)
        assert state.is_drained()
        assert state.processed == 1

    def test_wait_for_progress_returns_when_drained(self):
        state = SchedulerState([], limit=1)
        state.wait_for_progress()

    def test_cancel_pending_drains_queue(self):
        tasks = make_tasks(3)
        state = SchedulerState(tasks, limit=1)
        state.admit()

        assert state.cancel_pending() == 2
        assert state.admit() is None
        state.complete(tasks[0], PipelineOutcome.CONVERTED)
        assert state.is_drained()


def test_outputs_reserved_in_discovery_order():
    converter = RecordingConverter()
    tasks = make_tasks(4)

    make_scheduler(converter).run(tasks, concurrency=3)

    assert converter.reserved == [t.path.name for t in tasks]


def test_dry_run_reserves_nothing():
    converter = RecordingConverter()
    make_scheduler(converter).run(make_tasks(2), concurrency=1, dry_run=True)
    assert converter.reserved is None


def test_keyboard_interrupt_stops_admission(monkeypatch):
    gate = threading.Event()
    converter = RecordingConverter(gate=gate)
    bus = EventBus()
    warnings = []
    bus.subscribe(ConsoleMessage, warnings.append)
    scheduler = make_scheduler(converter, bus=bus)
    tasks = make_tasks(5)

    def interrupted(self):
        gate.set()
        raise KeyboardInterrupt

    monkeypatch.setattr(SchedulerState, "wait_for_progress", interrupted)

    with pytest.raises(KeyboardInterrupt):
        scheduler.run(tasks, concurrency=2)

    assert scheduler.shutdown_event.is_set()
    assert converter.order == ["00.mp4", "01.mp4"]
    assert not scheduler.state.pending
    assert not scheduler.state.in_flight
    assert "interrupting" in warnings[0].message
