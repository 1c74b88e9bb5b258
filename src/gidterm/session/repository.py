"""Run session persistence backed by SQLModel and SQLite."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func
from sqlmodel import Session, col, select

from gidterm.session.alembic_runner import upgrade_head
from gidterm.session.common import build_sqlite_engine, to_utc_aware, utc_now
from gidterm.session.models import (
    SessionChange,
    SessionStatus,
    SessionSummary,
    SessionTaskView,
    TaskEndChange,
    TaskOutputChange,
    TaskStartChange,
)
from gidterm.session.sqlmodel_models import RunSessionRow, SessionOutputLineRow, SessionTaskRow


class SessionRepository:
    """Stores sessions, their tasks and captured output lines."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        """Create the database directory and run migrations to head."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    def create_session(self, *, project: str, started_at: datetime | None = None) -> str:
        session_id = uuid4().hex
        with Session(self.engine) as session:
            session.add(
                RunSessionRow(
                    session_id=session_id,
                    project=project,
                    status=SessionStatus.ACTIVE.value,
                    started_at=started_at or utc_now(),
                ),
            )
            session.commit()
        return session_id

    def apply_changes(self, session_id: str, changes: Sequence[SessionChange]) -> None:
        """Write buffered changes in one transaction, in order."""

        with Session(self.engine) as session:
            rows: dict[str, SessionTaskRow] = {}
            for change in changes:
                row = rows.get(change.task_id)
                if row is None:
                    row = self._task_row(session, session_id=session_id, change=change)
                    rows[change.task_id] = row
                if isinstance(change, TaskStartChange):
                    row.status = "running"
                    row.started_at = change.at
                    row.ended_at = None
                    row.exit_code = None
                elif isinstance(change, TaskOutputChange):
                    row.output_line_count += 1
                    session.add(
                        SessionOutputLineRow(
                            session_id=session_id,
                            task_id=change.task_id,
                            seq=row.output_line_count,
                            line=change.line,
                            created_at=change.at,
                        ),
                    )
                elif isinstance(change, TaskEndChange):
                    row.status = change.status
                    row.exit_code = change.exit_code
                    row.ended_at = change.at
                session.add(row)
            session.commit()

    def finish_session(
        self,
        session_id: str,
        *,
        status: SessionStatus,
        ended_at: datetime | None = None,
    ) -> None:
        with Session(self.engine) as session:
            row = session.exec(
                select(RunSessionRow).where(RunSessionRow.session_id == session_id),
            ).one()
            row.status = status.value
            row.ended_at = ended_at or utc_now()
            session.add(row)
            session.commit()

    def list_sessions(self, *, limit: int = 20) -> list[SessionSummary]:
        """Most recent sessions first."""

        with Session(self.engine) as session:
            task_counts = (
                select(SessionTaskRow.session_id, func.count().label("task_count"))
                .group_by(SessionTaskRow.session_id)
                .subquery()
            )
            statement = (
                select(RunSessionRow, task_counts.c.task_count)
                .join(
                    task_counts,
                    task_counts.c.session_id == RunSessionRow.session_id,
                    isouter=True,
                )
                .order_by(col(RunSessionRow.started_at).desc())
                .limit(limit)
            )
            results = session.exec(statement).all()
        return [
            SessionSummary(
                session_id=row.session_id,
                project=row.project,
                status=SessionStatus(row.status),
                started_at=to_utc_aware(row.started_at),
                ended_at=to_utc_aware(row.ended_at) if row.ended_at is not None else None,
                task_count=int(count or 0),
            )
            for row, count in results
        ]

    def get_session_tasks(self, session_id: str, *, tail: int = 10) -> list[SessionTaskView]:
        """Tasks of one session, sorted by id, each with its last ``tail`` lines."""

        views: list[SessionTaskView] = []
        with Session(self.engine) as session:
            rows = session.exec(
                select(SessionTaskRow)
                .where(SessionTaskRow.session_id == session_id)
                .order_by(col(SessionTaskRow.task_id)),
            ).all()
            for row in rows:
                lines = session.exec(
                    select(SessionOutputLineRow.line)
                    .where(
                        SessionOutputLineRow.session_id == session_id,
                        SessionOutputLineRow.task_id == row.task_id,
                    )
                    .order_by(col(SessionOutputLineRow.seq).desc())
                    .limit(max(0, tail)),
                ).all()
                views.append(
                    SessionTaskView(
                        task_id=row.task_id,
                        status=row.status,
                        exit_code=row.exit_code,
                        started_at=to_utc_aware(row.started_at),
                        ended_at=to_utc_aware(row.ended_at) if row.ended_at is not None else None,
                        output_line_count=row.output_line_count,
                        output_tail=list(reversed(lines)),
                    ),
                )
        return views

    def _task_row(
        self,
        session: Session,
        *,
        session_id: str,
        change: SessionChange,
    ) -> SessionTaskRow:
        row = session.exec(
            select(SessionTaskRow).where(
                SessionTaskRow.session_id == session_id,
                SessionTaskRow.task_id == change.task_id,
            ),
        ).one_or_none()
        if row is not None:
            return row
        return SessionTaskRow(
            session_id=session_id,
            task_id=change.task_id,
            status="running",
            started_at=change.at,
        )
