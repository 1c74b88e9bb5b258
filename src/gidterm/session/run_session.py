"""Buffered session recorder used by the orchestrator."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from gidterm.session.common import utc_now
from gidterm.session.models import (
    SessionChange,
    SessionSaveError,
    SessionStatus,
    TaskEndChange,
    TaskOutputChange,
    TaskStartChange,
)
from gidterm.session.repository import SessionRepository

logger = logging.getLogger(__name__)


class RunSession:
    """Collects task lifecycle and output in memory until ``save``.

    The session row is created on the first successful save. Changes stay
    buffered when a save fails and are retried by the next one.
    """

    def __init__(self, repository: SessionRepository, *, project: str) -> None:
        self.repository = repository
        self.project = project
        self.session_id: str | None = None
        self._started_at = utc_now()
        self._pending: list[SessionChange] = []

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start_task(self, task_id: str) -> None:
        self._pending.append(TaskStartChange(task_id=task_id, at=utc_now()))

    def add_output(self, task_id: str, line: str) -> None:
        self._pending.append(TaskOutputChange(task_id=task_id, line=line, at=utc_now()))

    def end_task(self, task_id: str, status: str, exit_code: int | None) -> None:
        self._pending.append(
            TaskEndChange(task_id=task_id, status=status, exit_code=exit_code, at=utc_now()),
        )

    def save(self) -> None:
        """Flush pending changes; raises ``SessionSaveError`` on storage failure."""

        try:
            if self.session_id is None:
                self.session_id = self.repository.create_session(
                    project=self.project,
                    started_at=self._started_at,
                )
                logger.info("Session %s created for %s", self.session_id, self.project)
            if not self._pending:
                return
            self.repository.apply_changes(self.session_id, self._pending)
        except SQLAlchemyError as error:
            raise SessionSaveError(f"Failed to save session: {error}") from error
        logger.debug("Saved %d session changes", len(self._pending))
        self._pending = []

    def finish(self, status: SessionStatus) -> None:
        self.save()
        if self.session_id is None:
            return
        try:
            self.repository.finish_session(self.session_id, status=status)
        except SQLAlchemyError as error:
            raise SessionSaveError(f"Failed to finish session: {error}") from error
