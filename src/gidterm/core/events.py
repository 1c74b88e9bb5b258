"""Events emitted by the executor to its single consumer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TaskStarted:
    task_id: str
    pid: int | None = None


@dataclass(frozen=True, slots=True)
class TaskOutput:
    task_id: str
    line: str


@dataclass(frozen=True, slots=True)
class TaskCompleted:
    """Process exited; the exit code is reported, not interpreted."""

    task_id: str
    exit_code: int


@dataclass(frozen=True, slots=True)
class TaskFailed:
    """Process could not be spawned, streamed, or was cancelled."""

    task_id: str
    error: str


TaskEvent = TaskStarted | TaskOutput | TaskCompleted | TaskFailed

CANCELLED_ERROR = "cancelled"
