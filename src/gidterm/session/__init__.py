"""Persistence of run sessions."""

from gidterm.session.models import (
    SessionSaveError,
    SessionStatus,
    SessionSummary,
    SessionTaskView,
)
from gidterm.session.repository import SessionRepository
from gidterm.session.run_session import RunSession

__all__ = [
    "RunSession",
    "SessionRepository",
    "SessionSaveError",
    "SessionStatus",
    "SessionSummary",
    "SessionTaskView",
]
