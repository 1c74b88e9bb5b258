"""Task graph, scheduler, and process executor."""

from gidterm.core.errors import (
    CycleError,
    GidtermError,
    GraphFormatError,
    InvalidTransitionError,
    SpawnError,
    UnknownDependencyError,
)
from gidterm.core.events import TaskCompleted, TaskEvent, TaskFailed, TaskOutput, TaskStarted
from gidterm.core.executor import Executor
from gidterm.core.graph import TaskGraph
from gidterm.core.models import GraphMetadata, GraphNode, GraphSource, Task, TaskStatus
from gidterm.core.scheduler import Scheduler

__all__ = [
    "CycleError",
    "Executor",
    "GidtermError",
    "GraphFormatError",
    "GraphMetadata",
    "GraphNode",
    "GraphSource",
    "InvalidTransitionError",
    "Scheduler",
    "SpawnError",
    "Task",
    "TaskCompleted",
    "TaskEvent",
    "TaskFailed",
    "TaskGraph",
    "TaskOutput",
    "TaskStarted",
    "TaskStatus",
    "UnknownDependencyError",
]
