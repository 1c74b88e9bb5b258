"""Metric values and parse results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class MetricType(str, Enum):
    INT = "int"
    FLOAT = "float"
    STRING = "string"


@dataclass(frozen=True, slots=True)
class MetricValue:
    """Tagged metric value; accessors only succeed for the matching kind."""

    kind: MetricType
    value: int | float | str

    @classmethod
    def of_int(cls, value: int) -> MetricValue:
        return cls(kind=MetricType.INT, value=int(value))

    @classmethod
    def of_float(cls, value: float) -> MetricValue:
        return cls(kind=MetricType.FLOAT, value=float(value))

    @classmethod
    def of_str(cls, value: str) -> MetricValue:
        return cls(kind=MetricType.STRING, value=str(value))

    def as_int(self) -> int | None:
        return int(self.value) if self.kind == MetricType.INT else None

    def as_float(self) -> float | None:
        return float(self.value) if self.kind == MetricType.FLOAT else None

    def as_str(self) -> str | None:
        return str(self.value) if self.kind == MetricType.STRING else None

    def to_display(self) -> str:
        if self.kind == MetricType.FLOAT:
            return f"{float(self.value):g}"
        return str(self.value)


@dataclass(frozen=True, slots=True)
class ParsedMetrics:
    """Result of one parse call.

    ``progress`` is always within ``[0, 1]``. ``errors`` keeps detection order
    and may contain duplicates.
    """

    progress: float = 0.0
    metrics: Mapping[str, MetricValue] = field(default_factory=dict)
    phase: str | None = None
    errors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "progress", min(1.0, max(0.0, float(self.progress))))
        object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))
        object.__setattr__(self, "errors", tuple(self.errors))

    @classmethod
    def empty(cls, *errors: str) -> ParsedMetrics:
        return cls(errors=errors)

    def metric(self, name: str) -> MetricValue | None:
        return self.metrics.get(name)

    def to_dict(self) -> dict[str, object]:
        """Serialize for CLI output and session storage."""

        return {
            "progress": self.progress,
            "metrics": {name: value.value for name, value in self.metrics.items()},
            "phase": self.phase,
            "errors": list(self.errors),
        }
