"""Session views and buffered change records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from gidterm.core.errors import GidtermError


class SessionStatus(str, Enum):
    ACTIVE = "active"
    FINISHED = "finished"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class SessionSaveError(GidtermError):
    """Pending session changes could not be written."""


@dataclass(frozen=True, slots=True)
class TaskStartChange:
    task_id: str
    at: datetime


@dataclass(frozen=True, slots=True)
class TaskOutputChange:
    task_id: str
    line: str
    at: datetime


@dataclass(frozen=True, slots=True)
class TaskEndChange:
    task_id: str
    status: str
    exit_code: int | None
    at: datetime


SessionChange = TaskStartChange | TaskOutputChange | TaskEndChange


@dataclass(slots=True)
class SessionSummary:
    session_id: str
    project: str
    status: SessionStatus
    started_at: datetime
    ended_at: datetime | None
    task_count: int = 0


@dataclass(slots=True)
class SessionTaskView:
    task_id: str
    status: str
    exit_code: int | None
    started_at: datetime
    ended_at: datetime | None
    output_line_count: int
    output_tail: list[str] = field(default_factory=list)
