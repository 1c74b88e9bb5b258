"""Domain models for the task graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TaskStatus(str, Enum):
    """Authoritative scheduler lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    @property
    def satisfies_dependents(self) -> bool:
        """Whether a dependency in this state lets its dependents start."""

        return self in _SATISFIED_STATUSES


_TERMINAL_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.FAILED, TaskStatus.SKIPPED})
_SATISFIED_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.SKIPPED})


@dataclass(slots=True)
class GraphMetadata:
    """Optional project metadata attached to a graph."""

    project: str
    version: str | None = None
    description: str | None = None


@dataclass(slots=True)
class GraphNode:
    """Informational architecture node; never scheduled."""

    node_type: str
    description: str = ""
    layer: str | None = None
    status: str = "planned"
    priority: str | None = None
    depends_on: tuple[str, ...] = ()
    path: str | None = None


@dataclass(slots=True)
class Task:
    """Schedulable unit of work.

    A task without a command is a pass-through: it is resolved to done as soon
    as it becomes ready and never reaches the executor.
    """

    task_id: str
    command: str | None = None
    depends_on: tuple[str, ...] = ()
    status: TaskStatus = TaskStatus.PENDING
    task_type: str = "generic"
    description: str = ""
    priority: str | None = None
    tags: tuple[str, ...] = ()
    component: str | None = None
    estimated_hours: int | None = None
    cwd: str | None = None

    @property
    def is_pass_through(self) -> bool:
        return not (self.command or "").strip()


@dataclass(slots=True)
class GraphSource:
    """Deserialized graph file contents before validation."""

    tasks: dict[str, Task]
    metadata: GraphMetadata | None = None
    nodes: dict[str, GraphNode] = field(default_factory=dict)
