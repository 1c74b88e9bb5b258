"""Per-task runtime state derived from streamed output."""

from __future__ import annotations

from dataclasses import dataclass, field

from gidterm.agents.status import (
    DEFAULT_CLASSIFY_WINDOW,
    DEFAULT_HISTORY_LINES,
    OutputHistory,
    RuntimeStatus,
    classify_runtime_status,
)
from gidterm.semantic.metrics import ParsedMetrics


@dataclass(slots=True)
class TaskRuntime:
    history: OutputHistory
    status: RuntimeStatus = RuntimeStatus.NOT_RUNNING
    metrics: ParsedMetrics | None = None
    line_count: int = 0


@dataclass(slots=True)
class RuntimeTracker:
    """Output history, runtime status and last metrics for every task seen.

    Only the orchestrator loop updates a tracker.
    """

    history_lines: int = DEFAULT_HISTORY_LINES
    classify_window: int = DEFAULT_CLASSIFY_WINDOW
    _runtimes: dict[str, TaskRuntime] = field(default_factory=dict)

    def runtime(self, task_id: str) -> TaskRuntime:
        runtime = self._runtimes.get(task_id)
        if runtime is None:
            runtime = TaskRuntime(history=OutputHistory(self.history_lines))
            self._runtimes[task_id] = runtime
        return runtime

    def mark_started(self, task_id: str) -> None:
        self.runtime(task_id).status = RuntimeStatus.RUNNING

    def record_output(self, task_id: str, line: str, *, process_alive: bool) -> RuntimeStatus:
        runtime = self.runtime(task_id)
        runtime.history.append(line)
        runtime.line_count += 1
        runtime.status = classify_runtime_status(
            runtime.history.lines(),
            process_alive=process_alive,
            window=self.classify_window,
        )
        return runtime.status

    def record_metrics(self, task_id: str, metrics: ParsedMetrics) -> None:
        self.runtime(task_id).metrics = metrics

    def mark_exited(self, task_id: str, *, failed: bool) -> RuntimeStatus:
        """Settle the runtime status once the process is gone."""

        runtime = self.runtime(task_id)
        if failed:
            runtime.status = RuntimeStatus.ERROR
        elif runtime.status in (RuntimeStatus.RUNNING, RuntimeStatus.THINKING):
            runtime.status = RuntimeStatus.COMPLETED
        return runtime.status

    def status(self, task_id: str) -> RuntimeStatus:
        runtime = self._runtimes.get(task_id)
        return runtime.status if runtime is not None else RuntimeStatus.NOT_RUNNING

    def metrics(self, task_id: str) -> ParsedMetrics | None:
        runtime = self._runtimes.get(task_id)
        return runtime.metrics if runtime is not None else None

    def lines(self, task_id: str) -> list[str]:
        runtime = self._runtimes.get(task_id)
        return runtime.history.lines() if runtime is not None else []
