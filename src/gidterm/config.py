"""Runtime configuration for graph runs."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class ExecutionSettings:
    """Process supervision and scheduling settings."""

    max_parallel: int = 0
    poll_interval_seconds: float = 0.1
    fail_on_nonzero_exit: bool = False
    cancel_grace_seconds: float = 2.0


@dataclass(slots=True)
class MonitorSettings:
    """Output classification and agent discovery settings."""

    history_lines: int = 50
    classify_window: int = 10
    scan_interval_seconds: float = 5.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    graph_path: Path = Path(".gid") / "graph.yml"
    db_path: Path = Path(".gid") / "sessions.db"
    log_level: str = "WARNING"
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from ``GIDTERM_*`` variables with local-development defaults."""

        return cls(
            graph_path=Path(os.getenv("GIDTERM_GRAPH_PATH", str(Path(".gid") / "graph.yml"))),
            db_path=db_path
            or Path(os.getenv("GIDTERM_DB_PATH", str(Path(".gid") / "sessions.db"))),
            log_level=os.getenv("GIDTERM_LOG_LEVEL", "WARNING").strip().upper(),
            execution=ExecutionSettings(
                max_parallel=_env_int("GIDTERM_MAX_PARALLEL", 0),
                poll_interval_seconds=_env_float("GIDTERM_POLL_INTERVAL_SECONDS", 0.1),
                fail_on_nonzero_exit=_env_bool("GIDTERM_FAIL_ON_NONZERO_EXIT", default=False),
                cancel_grace_seconds=_env_float("GIDTERM_CANCEL_GRACE_SECONDS", 2.0),
            ),
            monitor=MonitorSettings(
                history_lines=_env_int("GIDTERM_HISTORY_LINES", 50),
                classify_window=_env_int("GIDTERM_CLASSIFY_WINDOW", 10),
                scan_interval_seconds=_env_float("GIDTERM_SCAN_INTERVAL_SECONDS", 5.0),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        if self.execution.max_parallel < 0:
            raise ValueError("GIDTERM_MAX_PARALLEL must be >= 0.")
        if self.execution.poll_interval_seconds <= 0:
            raise ValueError("GIDTERM_POLL_INTERVAL_SECONDS must be > 0.")
        if self.execution.cancel_grace_seconds < 0:
            raise ValueError("GIDTERM_CANCEL_GRACE_SECONDS must be >= 0.")
        if self.monitor.history_lines <= 0:
            raise ValueError("GIDTERM_HISTORY_LINES must be a positive integer.")
        if not 0 < self.monitor.classify_window <= self.monitor.history_lines:
            raise ValueError(
                "GIDTERM_CLASSIFY_WINDOW must be positive and not exceed GIDTERM_HISTORY_LINES.",
            )
        if self.monitor.scan_interval_seconds < 0:
            raise ValueError("GIDTERM_SCAN_INTERVAL_SECONDS must be >= 0.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"GIDTERM_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}: {self.log_level!r}",
            )

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number for {name}: {value!r}") from error


def _env_bool(name: str, *, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
