"""Deterministic runtime status classification from recent task output."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

DEFAULT_HISTORY_LINES = 50
DEFAULT_CLASSIFY_WINDOW = 10


class RuntimeStatus(str, Enum):
    """Coarse lifecycle inferred from output; advisory only."""

    NOT_RUNNING = "not_running"
    RUNNING = "running"
    THINKING = "thinking"
    WAITING_INPUT = "waiting_input"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def display_text(self) -> str:
        return _DISPLAY_TEXT[self]


_DISPLAY_TEXT = {
    RuntimeStatus.NOT_RUNNING: "not running",
    RuntimeStatus.RUNNING: "running",
    RuntimeStatus.THINKING: "thinking",
    RuntimeStatus.WAITING_INPUT: "waiting for input",
    RuntimeStatus.COMPLETED: "completed",
    RuntimeStatus.ERROR: "error",
}

_ERROR_PATTERNS: tuple[str, ...] = (
    "error:",
    "error!",
    "failed",
    "failure",
    "exception",
    "panic",
    "crash",
    "aborted",
    "fatal",
    "cannot",
    "couldn't",
    "unable to",
    "permission denied",
)
_WAITING_PATTERNS: tuple[str, ...] = (
    "waiting for input",
    "waiting for",
    "press enter",
    "press any key",
    "[y/n]",
    "(y/n)",
    "confirm",
    "continue?",
    "proceed?",
    "approve",
    "permission",
    "enter your",
    "type your",
    "would you like",
    "do you want",
    "please provide",
    "please enter",
)
_COMPLETED_PATTERNS: tuple[str, ...] = (
    "done",
    "completed",
    "finished",
    "success",
    "all tasks complete",
    "goodbye",
    "bye",
    "exiting",
    "session ended",
    "task complete",
)
_THINKING_PATTERNS: tuple[str, ...] = (
    "thinking",
    "processing",
    "analyzing",
    "generating",
    "working on",
    "computing",
    "waiting for response",
    "loading",
    "searching",
    "reading",
    "reviewing",
)

# Priority order: an earlier rule matching anywhere in the window wins.
_RULES: tuple[tuple[str, RuntimeStatus, tuple[str, ...]], ...] = (
    ("error", RuntimeStatus.ERROR, _ERROR_PATTERNS),
    ("waiting_input", RuntimeStatus.WAITING_INPUT, _WAITING_PATTERNS),
    ("completed", RuntimeStatus.COMPLETED, _COMPLETED_PATTERNS),
    ("thinking", RuntimeStatus.THINKING, _THINKING_PATTERNS),
)


@dataclass(slots=True)
class RuntimeClassification:
    """Classification result with the rule that produced it."""

    status: RuntimeStatus
    matched_rule: str
    matched_pattern: str | None = None
    matched_line: str | None = None


def explain_runtime_status(
    recent_lines: Sequence[str],
    *,
    process_alive: bool,
    window: int = DEFAULT_CLASSIFY_WINDOW,
) -> RuntimeClassification:
    """Classify the last ``window`` lines and report which pattern decided."""

    if not process_alive:
        return RuntimeClassification(status=RuntimeStatus.NOT_RUNNING, matched_rule="not_alive")

    tail = list(recent_lines[-window:]) if window > 0 else []
    lowered = [(line, line.lower()) for line in reversed(tail)]
    for rule, status, patterns in _RULES:
        for line, haystack in lowered:
            pattern = _first_match(haystack, patterns)
            if pattern is not None:
                return RuntimeClassification(
                    status=status,
                    matched_rule=rule,
                    matched_pattern=pattern,
                    matched_line=line,
                )
    return RuntimeClassification(status=RuntimeStatus.RUNNING, matched_rule="default")


def classify_runtime_status(
    recent_lines: Sequence[str],
    *,
    process_alive: bool,
    window: int = DEFAULT_CLASSIFY_WINDOW,
) -> RuntimeStatus:
    return explain_runtime_status(
        recent_lines,
        process_alive=process_alive,
        window=window,
    ).status


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


class OutputHistory:
    """Bounded line buffer; the oldest line is evicted first."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_LINES, lines: Iterable[str] = ()) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._lines: deque[str] = deque(lines, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._lines.maxlen or 0

    def __len__(self) -> int:
        return len(self._lines)

    def append(self, line: str) -> None:
        self._lines.append(line)

    def lines(self) -> list[str]:
        return list(self._lines)

    def tail(self, count: int) -> list[str]:
        if count <= 0:
            return []
        return list(self._lines)[-count:]

    def text(self) -> str:
        return "\n".join(self._lines)
