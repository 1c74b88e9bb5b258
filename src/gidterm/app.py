"""Coordinating loop: scheduler, executor, classification and session feedback."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Protocol

from gidterm.agents.status import RuntimeStatus
from gidterm.agents.tracker import RuntimeTracker
from gidterm.core.errors import InvalidTransitionError, SpawnError
from gidterm.core.events import TaskCompleted, TaskEvent, TaskFailed, TaskOutput, TaskStarted
from gidterm.core.loader import split_namespace
from gidterm.core.models import TaskStatus
from gidterm.core.scheduler import Scheduler
from gidterm.semantic.registry import ParserRegistry, build_default_registry
from gidterm.session.models import SessionSaveError

logger = logging.getLogger(__name__)

_QUIT_DRAIN_SECONDS = 10.0


class TaskExecutor(Protocol):
    def start_task(self, task_id: str, command: str, *, cwd: str | None = None) -> int: ...

    def cancel_task(self, task_id: str) -> bool: ...

    def poll_events(
        self,
        timeout: float | None = 0.0,
        *,
        max_events: int | None = None,
    ) -> list[TaskEvent]: ...

    def shutdown(self, timeout: float | None = 5.0) -> None: ...


class SessionSink(Protocol):
    def start_task(self, task_id: str) -> None: ...

    def add_output(self, task_id: str, line: str) -> None: ...

    def end_task(self, task_id: str, status: str, exit_code: int | None) -> None: ...

    def save(self) -> None: ...


@dataclass(slots=True)
class TaskSnapshot:
    """Read-only view of one task for renderers."""

    task_id: str
    status: TaskStatus
    runtime_status: RuntimeStatus
    progress: float | None = None
    phase: str | None = None
    exit_code: int | None = None
    error: str | None = None
    last_line: str | None = None


@dataclass(slots=True)
class AppSummary:
    counts: dict[TaskStatus, int] = field(default_factory=dict)
    exit_codes: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    interrupted: bool = False
    ticks: int = 0

    @property
    def succeeded(self) -> bool:
        return not self.interrupted and self.counts.get(TaskStatus.FAILED, 0) == 0


class App:
    """Drives one graph to completion.

    Each tick starts whatever is ready, then consumes executor events and
    feeds them back into the scheduler, the runtime tracker and the session.
    The loop is the only writer of task status.
    """

    def __init__(  # noqa: PLR0913
        self,
        scheduler: Scheduler,
        executor: TaskExecutor,
        *,
        session: SessionSink | None = None,
        registry: ParserRegistry | None = None,
        tracker: RuntimeTracker | None = None,
        max_parallel: int = 0,
        fail_on_nonzero_exit: bool = False,
        poll_interval_seconds: float = 0.1,
        on_event: Callable[[TaskEvent], None] | None = None,
        projects: Sequence[str] | None = None,
    ) -> None:
        if max_parallel < 0:
            raise ValueError("max_parallel must be >= 0")
        self.scheduler = scheduler
        self.executor = executor
        self.session = session
        self.registry = registry if registry is not None else build_default_registry()
        self.tracker = tracker if tracker is not None else RuntimeTracker()
        self.max_parallel = max_parallel
        self.fail_on_nonzero_exit = fail_on_nonzero_exit
        self.poll_interval_seconds = poll_interval_seconds
        self.on_event = on_event
        self.project_names = sorted(projects) if projects else []
        self.should_quit = False
        self.selected_index = 0
        self._exit_codes: dict[str, int] = {}
        self._errors: dict[str, str] = {}
        self._ticks = 0

    @property
    def workspace_mode(self) -> bool:
        return bool(self.project_names)

    def start_ready_tasks(self) -> list[str]:
        """Start ready tasks within the parallelism limit; returns started ids."""

        ready = self.scheduler.schedule_next()
        if self.max_parallel > 0:
            free_slots = max(0, self.max_parallel - len(self.scheduler.get_running()))
            ready = ready[:free_slots]

        started: list[str] = []
        for task_id in ready:
            task = self.scheduler.graph.task(task_id)
            try:
                self.scheduler.mark_started(task_id)
            except InvalidTransitionError as error:
                logger.warning("%s", error)
                continue
            self.tracker.mark_started(task_id)
            if self.session is not None:
                self.session.start_task(task_id)
            started.append(task_id)
            try:
                self.executor.start_task(task_id, task.command or "", cwd=task.cwd)
            except SpawnError as error:
                # The executor has queued TaskFailed; the next drain fails the task.
                logger.warning("%s", error)

        if started:
            self._save_session()
        return started

    def process_events(self, timeout: float | None = 0.0) -> int:
        """Consume all queued executor events; returns how many were handled."""

        events = self.executor.poll_events(timeout)
        for event in events:
            self._handle_event(event)
            if self.on_event is not None:
                self.on_event(event)
        if events:
            self._save_session()
        return len(events)

    def tick(self) -> int:
        self._ticks += 1
        self.start_ready_tasks()
        timeout = self.poll_interval_seconds if self.scheduler.get_running() else 0.0
        return self.process_events(timeout)

    def run(self, *, max_ticks: int | None = None) -> AppSummary:
        """Tick until no task can progress, quit is requested or ``max_ticks``."""

        with self._signal_handlers():
            while not self.should_quit:
                if max_ticks is not None and self._ticks >= max_ticks:
                    break
                self.tick()
                if self.scheduler.is_finished():
                    break
            if self.should_quit:
                self._drain_after_quit()
        return self.summary()

    def cancel(self, task_id: str) -> None:
        """Cancel a running task; its failure cascades like any other."""

        current = self.scheduler.graph.status(task_id)
        if current != TaskStatus.RUNNING:
            raise InvalidTransitionError(task_id, current.value, TaskStatus.FAILED.value)
        self.executor.cancel_task(task_id)

    def request_quit(self) -> None:
        self.should_quit = True

    def summary(self) -> AppSummary:
        return AppSummary(
            counts=self.scheduler.counts(),
            exit_codes=dict(self._exit_codes),
            errors=dict(self._errors),
            interrupted=self.should_quit,
            ticks=self._ticks,
        )

    def get_task_ids(self) -> list[str]:
        return self.scheduler.graph.task_ids()

    def get_task_output(self, task_id: str, last_n: int) -> list[str]:
        """Last ``last_n`` lines, bounded by the tracker's history size."""

        lines = self.tracker.lines(task_id)
        return lines[-last_n:] if last_n > 0 else []

    def select_next(self) -> None:
        if self.selected_index + 1 < len(self.scheduler.graph):
            self.selected_index += 1

    def select_previous(self) -> None:
        if self.selected_index > 0:
            self.selected_index -= 1

    @property
    def selected_task_id(self) -> str | None:
        task_ids = self.get_task_ids()
        if not task_ids:
            return None
        return task_ids[min(self.selected_index, len(task_ids) - 1)]

    def project_name(self, task_id: str) -> str | None:
        """Project prefix of a namespaced id in workspace mode."""

        if not self.workspace_mode:
            return None
        project, _ = split_namespace(task_id)
        return project

    def tasks_by_project(self) -> dict[str, list[str]]:
        if not self.workspace_mode:
            return {self.scheduler.graph.project_name: self.get_task_ids()}
        grouped: dict[str, list[str]] = {name: [] for name in self.project_names}
        for task_id in self.get_task_ids():
            project = self.project_name(task_id)
            if project is not None:
                grouped.setdefault(project, []).append(task_id)
        return grouped

    def snapshot(self) -> list[TaskSnapshot]:
        snapshots: list[TaskSnapshot] = []
        for task in self.scheduler.graph:
            metrics = self.tracker.metrics(task.task_id)
            lines = self.tracker.lines(task.task_id)
            snapshots.append(
                TaskSnapshot(
                    task_id=task.task_id,
                    status=task.status,
                    runtime_status=self.tracker.status(task.task_id),
                    progress=metrics.progress if metrics is not None else None,
                    phase=metrics.phase if metrics is not None else None,
                    exit_code=self._exit_codes.get(task.task_id),
                    error=self._errors.get(task.task_id),
                    last_line=lines[-1] if lines else None,
                ),
            )
        return snapshots

    def _handle_event(self, event: TaskEvent) -> None:
        if event.task_id not in self.scheduler.graph:
            logger.warning("Ignoring event for unknown task %s", event.task_id)
            return
        try:
            if isinstance(event, TaskStarted):
                logger.info("Task %s running (pid=%s)", event.task_id, event.pid)
            elif isinstance(event, TaskOutput):
                self._handle_output(event)
            elif isinstance(event, TaskCompleted):
                self._handle_completed(event)
            elif isinstance(event, TaskFailed):
                self._handle_failed(event)
        except InvalidTransitionError as error:
            logger.warning("Rejected transition: %s", error)

    def _handle_output(self, event: TaskOutput) -> None:
        if not event.line:
            return
        task_id = event.task_id
        alive = self.scheduler.graph.status(task_id) == TaskStatus.RUNNING
        self.tracker.record_output(task_id, event.line, process_alive=alive)
        task_type = self.scheduler.graph.task(task_id).task_type
        self.tracker.record_metrics(
            task_id,
            self.registry.parse(task_type, "\n".join(self.tracker.lines(task_id))),
        )
        if self.session is not None:
            self.session.add_output(task_id, event.line)

    def _handle_completed(self, event: TaskCompleted) -> None:
        task_id = event.task_id
        skipped: list[str] = []
        if self.fail_on_nonzero_exit and event.exit_code != 0:
            skipped = self._fail(task_id, f"exit code {event.exit_code}")
            status = TaskStatus.FAILED
        else:
            self.scheduler.mark_done(task_id)
            self.tracker.mark_exited(task_id, failed=False)
            status = TaskStatus.DONE
        self._exit_codes[task_id] = event.exit_code
        logger.info("Task %s exited with %d", task_id, event.exit_code)
        self._record_end(task_id, status, event.exit_code, skipped)

    def _handle_failed(self, event: TaskFailed) -> None:
        logger.warning("Task %s failed: %s", event.task_id, event.error)
        skipped = self._fail(event.task_id, event.error)
        self._record_end(event.task_id, TaskStatus.FAILED, None, skipped)

    def _fail(self, task_id: str, error: str) -> list[str]:
        """Fail ``task_id``; the error is kept only once the transition is accepted."""

        skipped = self.scheduler.mark_failed(task_id)
        self._errors[task_id] = error
        self.tracker.mark_exited(task_id, failed=True)
        return skipped

    def _record_end(
        self,
        task_id: str,
        status: TaskStatus,
        exit_code: int | None,
        skipped: list[str],
    ) -> None:
        if self.session is None:
            return
        self.session.end_task(task_id, status.value, exit_code)
        for skipped_id in skipped:
            self.session.end_task(skipped_id, TaskStatus.SKIPPED.value, None)

    def _save_session(self) -> None:
        if self.session is None:
            return
        try:
            self.session.save()
        except SessionSaveError as error:
            logger.warning("%s", error)

    def _drain_after_quit(self) -> None:
        running = self.scheduler.get_running()
        logger.info("Quit requested; cancelling %d running tasks", len(running))
        self.executor.shutdown()
        deadline = time.monotonic() + _QUIT_DRAIN_SECONDS
        while self.scheduler.get_running() and time.monotonic() < deadline:
            self.process_events(self.poll_interval_seconds)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        def _handler(signum: int, _: object | None) -> None:
            logger.info("Received %s", signal.Signals(signum).name)
            self.request_quit()

        try:
            original_sigint = signal.signal(signal.SIGINT, _handler)
            original_sigterm = signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
