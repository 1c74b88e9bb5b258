"""Error taxonomy shared by graph loading, scheduling, and execution."""

from __future__ import annotations


class GidtermError(Exception):
    """Base class for all gidterm errors."""


class GraphFormatError(GidtermError):
    """Graph source is unreadable or structurally invalid."""


class UnknownDependencyError(GidtermError):
    """A task depends on an identifier that is not part of the graph."""

    def __init__(self, task_id: str, dependency: str) -> None:
        super().__init__(f"Task {task_id!r} depends on unknown task {dependency!r}")
        self.task_id = task_id
        self.dependency = dependency


class CycleError(GidtermError):
    """Dependency relation is not a DAG."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__("Dependency cycle detected: " + " -> ".join(cycle))
        self.cycle = tuple(cycle)


class InvalidTransitionError(GidtermError):
    """Requested status change is not allowed by the task state machine."""

    def __init__(self, task_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Invalid transition for task {task_id!r}: {current} -> {requested}",
        )
        self.task_id = task_id
        self.current = current
        self.requested = requested


class SpawnError(GidtermError):
    """Task process could not be started."""

    def __init__(self, task_id: str, message: str) -> None:
        super().__init__(f"Failed to start task {task_id!r}: {message}")
        self.task_id = task_id
