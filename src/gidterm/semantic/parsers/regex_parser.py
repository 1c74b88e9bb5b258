"""Configurable regex parser for generic build and test output."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from gidterm.semantic.metrics import MetricType, MetricValue, ParsedMetrics

REGEX_SUPPORTED_TYPES: tuple[str, ...] = ("generic", "build", "test", "data_processing")


@dataclass(frozen=True, slots=True)
class ProgressPattern:
    """Progress regex; without ``total_group`` the current value is a percentage."""

    regex: re.Pattern[str]
    current_group: int | str = 1
    total_group: int | str | None = None


@dataclass(frozen=True, slots=True)
class MetricPattern:
    name: str
    regex: re.Pattern[str]
    value_group: int | str = 1
    value_type: MetricType = MetricType.FLOAT


@dataclass(frozen=True, slots=True)
class ParserPatterns:
    progress: tuple[ProgressPattern, ...] = ()
    metrics: tuple[MetricPattern, ...] = ()
    phase: re.Pattern[str] | None = None
    errors: tuple[re.Pattern[str], ...] = field(default_factory=tuple)

    @classmethod
    def default(cls) -> ParserPatterns:
        return cls(
            progress=(
                ProgressPattern(re.compile(r"(\d+)/(\d+)"), current_group=1, total_group=2),
                ProgressPattern(re.compile(r"\[=+>\s+\]\s*(\d+)%"), current_group=1),
                ProgressPattern(re.compile(r"(\d+)%"), current_group=1),
            ),
            phase=re.compile(r"(?:Phase|Stage):\s*(\w+)"),
            errors=(
                re.compile(r"(?i)error:"),
                re.compile(r"(?i)failed"),
                re.compile(r"(?i)exception"),
            ),
        )


class RegexParser:
    """Pattern-driven parser.

    Progress patterns are tried in declaration order and the first one that
    yields a value wins; within a pattern the most recent matching line is
    used. Metrics keep the last match in input order. Every line matching an
    error pattern is reported, grouped by pattern.
    """

    def __init__(self, name: str = "regex", patterns: ParserPatterns | None = None) -> None:
        self._name = name
        self.patterns = patterns if patterns is not None else ParserPatterns.default()

    @property
    def name(self) -> str:
        return self._name

    def supported_types(self) -> tuple[str, ...]:
        return REGEX_SUPPORTED_TYPES

    def parse(self, text: str) -> ParsedMetrics:
        lines = text.splitlines()
        return ParsedMetrics(
            progress=self._extract_progress(lines) or 0.0,
            metrics=self._extract_metrics(lines),
            phase=self._extract_phase(lines),
            errors=tuple(self._extract_errors(lines)),
        )

    def can_parse(self, text: str) -> bool:
        lines = text.splitlines()
        return (
            self._extract_progress(lines) is not None
            or bool(self._extract_metrics(lines))
            or self._extract_phase(lines) is not None
        )

    def _extract_progress(self, lines: list[str]) -> float | None:
        for pattern in self.patterns.progress:
            for line in reversed(lines):
                value = _progress_from_line(pattern, line)
                if value is not None:
                    return value
        return None

    def _extract_metrics(self, lines: list[str]) -> dict[str, MetricValue]:
        found: dict[str, MetricValue] = {}
        for pattern in self.patterns.metrics:
            for line in lines:
                match = pattern.regex.search(line)
                if match is None:
                    continue
                value = _coerce(match.group(pattern.value_group), pattern.value_type)
                if value is not None:
                    found[pattern.name] = value
        return found

    def _extract_phase(self, lines: list[str]) -> str | None:
        if self.patterns.phase is None:
            return None
        for line in reversed(lines):
            match = self.patterns.phase.search(line)
            if match is not None:
                return match.group(1)
        return None

    def _extract_errors(self, lines: list[str]) -> list[str]:
        return [line for regex in self.patterns.errors for line in lines if regex.search(line)]


def _progress_from_line(pattern: ProgressPattern, line: str) -> float | None:
    match = pattern.regex.search(line)
    if match is None:
        return None
    try:
        current = float(match.group(pattern.current_group))
        if pattern.total_group is None:
            return current / 100.0
        total = float(match.group(pattern.total_group))
    except (TypeError, ValueError):
        return None
    if total <= 0:
        return None
    return current / total


def _coerce(raw: str | None, value_type: MetricType) -> MetricValue | None:
    if raw is None:
        return None
    try:
        if value_type == MetricType.INT:
            return MetricValue.of_int(int(raw))
        if value_type == MetricType.FLOAT:
            return MetricValue.of_float(float(raw))
    except ValueError:
        return None
    return MetricValue.of_str(raw)
