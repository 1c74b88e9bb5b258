"""Controllers for gidterm CLI commands."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from gidterm.agents.detector import AgentDetector, ScanCache
from gidterm.agents.status import explain_runtime_status
from gidterm.agents.tracker import RuntimeTracker
from gidterm.app import App, AppSummary
from gidterm.config import Settings
from gidterm.core.events import TaskCompleted, TaskEvent, TaskFailed, TaskOutput, TaskStarted
from gidterm.core.executor import Executor
from gidterm.core.graph import TaskGraph
from gidterm.core.loader import Workspace, load_graph
from gidterm.core.models import TaskStatus
from gidterm.core.scheduler import Scheduler
from gidterm.semantic.registry import build_default_registry
from gidterm.session.models import SessionSaveError, SessionStatus
from gidterm.session.repository import SessionRepository
from gidterm.session.run_session import RunSession

logger = logging.getLogger(__name__)

_SENTINEL = object()


@dataclass(slots=True)
class RunGraphCommand:
    """CLI input for running a graph to completion."""

    graph_path: Path | None = None
    workspace: Path | None = None
    db_path: Path | None = None
    max_parallel: int | None = None
    fail_on_nonzero_exit: bool | None = None
    record_session: bool = True


@dataclass(slots=True)
class RunReport:
    """Filled in by ``run_graph`` once the run is over."""

    summary: AppSummary | None = None
    session_id: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.summary is not None and self.summary.succeeded


@dataclass(slots=True)
class ReadyCommand:
    graph_path: Path | None = None
    workspace: Path | None = None


@dataclass(slots=True)
class ParseCommand:
    file_path: Path
    task_type: str | None = None


@dataclass(slots=True)
class ClassifyCommand:
    file_path: Path
    process_alive: bool = True


@dataclass(slots=True)
class SessionsCommand:
    db_path: Path | None = None
    limit: int = 20
    session_id: str | None = None
    tail: int = 5


@dataclass(slots=True)
class _GraphBundle:
    graph: TaskGraph
    projects: list[str] = field(default_factory=list)


class GidtermCliController:
    """CLI controller for graph runs and output inspection."""

    def run_graph(self, command: RunGraphCommand, report: RunReport) -> Iterator[str]:
        """Run the graph in a background loop, yielding event lines as they happen."""

        settings = _settings_for(command)
        bundle = _load_bundle(settings, workspace=command.workspace)
        scheduler = Scheduler(bundle.graph)
        executor = Executor(cancel_grace_seconds=settings.execution.cancel_grace_seconds)
        lines_q: queue.Queue[str | object] = queue.Queue()

        with _run_session(settings, bundle, enabled=command.record_session) as session:
            app = App(
                scheduler,
                executor,
                session=session,
                registry=build_default_registry(),
                tracker=RuntimeTracker(
                    history_lines=settings.monitor.history_lines,
                    classify_window=settings.monitor.classify_window,
                ),
                max_parallel=settings.execution.max_parallel,
                fail_on_nonzero_exit=settings.execution.fail_on_nonzero_exit,
                poll_interval_seconds=settings.execution.poll_interval_seconds,
                on_event=lambda event: lines_q.put(format_event(event)),
                projects=bundle.projects,
            )
            yield f"Running {len(bundle.graph)} tasks from {bundle.graph.project_name}"

            def _run() -> None:
                try:
                    report.summary = app.run()
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Run loop crashed")
                    report.error = str(exc)
                    executor.shutdown()
                finally:
                    lines_q.put(_SENTINEL)

            loop_thread = threading.Thread(target=_run, name="gidterm-app", daemon=True)
            loop_thread.start()

            while True:
                try:
                    item = lines_q.get()
                except KeyboardInterrupt:
                    app.request_quit()
                    continue
                if item is _SENTINEL:
                    break
                yield str(item)
            loop_thread.join(timeout=10)

            if session is not None:
                report.session_id = _finish_session(session, report)

        if report.error is not None:
            yield f"Run failed with error: {report.error}"
            return
        if report.summary is not None:
            yield from _format_summary(report.summary, report.session_id)

    def ready_tasks(self, command: ReadyCommand) -> Iterator[str]:
        """List tasks that would start now, after resolving commandless tasks."""

        settings = Settings.from_env()
        if command.graph_path is not None:
            settings.graph_path = command.graph_path
        bundle = _load_bundle(settings, workspace=command.workspace)
        ready = Scheduler(bundle.graph).schedule_next()
        if not ready:
            yield "No ready tasks."
            return
        yield f"Ready tasks ({len(ready)}):"
        for task_id in ready:
            yield f"  {task_id}: {bundle.graph.task(task_id).command}"

    def parse_output(self, command: ParseCommand) -> Iterator[str]:
        text = command.file_path.read_text(encoding="utf-8", errors="replace")
        registry = build_default_registry()
        parser = registry.get_for_type(command.task_type) if command.task_type else None
        if parser is None:
            parser = registry.find_parser(text)
        metrics = registry.parse(command.task_type, text)

        yield f"Parser: {parser.name if parser is not None else 'none'}"
        yield f"Progress: {metrics.progress:.1%}"
        if metrics.phase is not None:
            yield f"Phase: {metrics.phase}"
        for name in sorted(metrics.metrics):
            yield f"  {name}: {metrics.metrics[name].to_display()}"
        for error in metrics.errors:
            yield f"Error: {error}"

    def classify_output(self, command: ClassifyCommand) -> Iterator[str]:
        settings = Settings.from_env()
        lines = command.file_path.read_text(encoding="utf-8", errors="replace").splitlines()
        result = explain_runtime_status(
            lines,
            process_alive=command.process_alive,
            window=settings.monitor.classify_window,
        )
        yield f"Status: {result.status.display_text}"
        yield f"Rule: {result.matched_rule}"
        if result.matched_pattern is not None:
            yield f"Pattern: {result.matched_pattern!r}"
        if result.matched_line is not None:
            yield f"Line: {result.matched_line}"

    def list_agents(self) -> Iterator[str]:
        settings = Settings.from_env()
        detector = AgentDetector(cache=ScanCache(settings.monitor.scan_interval_seconds))
        processes = detector.scan()
        if not processes:
            yield "No agent processes found."
            return
        for process in processes:
            cwd = process.cwd or "?"
            name = process.agent_type.display_name
            yield f"{process.pid:>7}  {name:<12} {cwd}  {process.command}"

    def list_sessions(self, command: SessionsCommand) -> Iterator[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            if command.session_id is not None:
                tasks = repository.get_session_tasks(command.session_id, tail=command.tail)
                if not tasks:
                    yield f"No tasks recorded for session {command.session_id}."
                    return
                for task in tasks:
                    exit_code = "-" if task.exit_code is None else str(task.exit_code)
                    yield (
                        f"{task.task_id}: {task.status} exit={exit_code} "
                        f"lines={task.output_line_count}"
                    )
                    for line in task.output_tail:
                        yield f"    {line}"
                return

            sessions = repository.list_sessions(limit=command.limit)
            if not sessions:
                yield "No sessions recorded."
                return
            for item in sessions:
                yield (
                    f"{item.session_id}  {item.started_at:%Y-%m-%d %H:%M:%S}  "
                    f"{item.status.value:<11} {item.project} ({item.task_count} tasks)"
                )


def format_event(event: TaskEvent) -> str:
    if isinstance(event, TaskStarted):
        return f"[start] {event.task_id} (pid {event.pid})"
    if isinstance(event, TaskOutput):
        return f"[{event.task_id}] {event.line}"
    if isinstance(event, TaskCompleted):
        return f"[exit] {event.task_id} code={event.exit_code}"
    if isinstance(event, TaskFailed):
        return f"[failed] {event.task_id}: {event.error}"
    return repr(event)


def _settings_for(command: RunGraphCommand) -> Settings:
    settings = Settings.from_env(db_path=command.db_path)
    if command.graph_path is not None:
        settings.graph_path = command.graph_path
    if command.max_parallel is not None:
        settings.execution.max_parallel = command.max_parallel
    if command.fail_on_nonzero_exit is not None:
        settings.execution.fail_on_nonzero_exit = command.fail_on_nonzero_exit
    settings.validate()
    return settings


def _load_bundle(settings: Settings, *, workspace: Path | None) -> _GraphBundle:
    if workspace is not None:
        loaded = Workspace.discover(workspace)
        return _GraphBundle(graph=loaded.to_graph(), projects=loaded.project_names())
    return _GraphBundle(graph=load_graph(settings.graph_path))


def _format_summary(summary: AppSummary, session_id: str | None) -> Iterator[str]:
    yield ""
    yield "Interrupted." if summary.interrupted else "Run finished."
    for status in TaskStatus:
        count = summary.counts.get(status, 0)
        if count:
            yield f"  {status.value}: {count}"
    for task_id in sorted(summary.errors):
        yield f"  {task_id}: {summary.errors[task_id]}"
    if session_id is not None:
        yield f"Session: {session_id}"


def _finish_session(session: RunSession, report: RunReport) -> str | None:
    if report.summary is None:
        status = SessionStatus.FAILED
    elif report.summary.interrupted:
        status = SessionStatus.INTERRUPTED
    elif report.summary.succeeded:
        status = SessionStatus.FINISHED
    else:
        status = SessionStatus.FAILED
    try:
        session.finish(status)
    except SessionSaveError as error:
        logger.warning("%s", error)
    return session.session_id


@contextmanager
def _run_session(
    settings: Settings,
    bundle: _GraphBundle,
    *,
    enabled: bool,
) -> Iterator[RunSession | None]:
    if not enabled:
        yield None
        return
    with _repository(settings) as repository:
        yield RunSession(repository, project=bundle.graph.project_name)


@contextmanager
def _repository(settings: Settings) -> Iterator[SessionRepository]:
    repository = SessionRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
