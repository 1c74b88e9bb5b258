"""SQLModel tables for persisted run sessions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class RunSessionRow(SQLModel, table=True):
    __tablename__ = "sessions"  # type: ignore[bad-override]

    session_id: str = Field(primary_key=True)
    project: str = Field(index=True)
    status: str = Field(index=True)
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    ended_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class SessionTaskRow(SQLModel, table=True):
    __tablename__ = "session_tasks"  # type: ignore[bad-override]
    __table_args__ = (UniqueConstraint("session_id", "task_id", name="uq_session_tasks_task"),)

    id: int | None = Field(default=None, primary_key=True)
    session_id: str = Field(
        sa_column=Column(
            ForeignKey("sessions.session_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    task_id: str = Field(index=True)
    status: str
    exit_code: int | None = None
    output_line_count: int = 0
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    ended_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class SessionOutputLineRow(SQLModel, table=True):
    __tablename__ = "session_output_lines"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    session_id: str = Field(
        sa_column=Column(
            ForeignKey("sessions.session_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    task_id: str = Field(index=True)
    seq: int
    line: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
