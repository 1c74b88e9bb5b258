"""Parser for machine-learning training logs (PyTorch, Keras and similar)."""

from __future__ import annotations

import re

from gidterm.semantic.metrics import MetricValue, ParsedMetrics

ML_SUPPORTED_TYPES: tuple[str, ...] = ("ml_training", "deep_learning", "training")

NAN_LOSS_ERROR = "Loss is NaN - training diverged"
GPU_OOM_ERROR = "Out of GPU memory"

_EPOCH = re.compile(r"(?i)epoch\s*(\d+)\s*/\s*(\d+)")
_LOSS = re.compile(r"(?i)loss:\s*([\d.]+(?:e[-+]?\d+)?)")
_ACCURACY = re.compile(r"(?i)\b(?:acc|accuracy):\s*([\d.]+)")
_LEARNING_RATE = re.compile(r"(?i)\b(?:lr|learning.?rate):\s*([\d.]+(?:e[-+]?\d+)?)")
_NAN = re.compile(r"(?i)\bnan\b")
_ERROR_MARKER = "error:"
_OOM_MARKER = "CUDA out of memory"

# Checked in order; the first keyword family present names the phase.
_PHASES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Validation", re.compile(r"(?i)\bvalidat(?:ing|ion)\b")),
    ("Testing", re.compile(r"(?i)\btest(?:ing)?\b")),
    ("Training", re.compile(r"(?i)\b(?:training|epoch)\b")),
)


class MLTrainingParser:
    """Extracts epoch progress, loss, accuracy and learning rate.

    Every value comes from the most recent line that carries it, so a
    validation loss printed after a training loss wins.
    """

    @property
    def name(self) -> str:
        return "ml_training"

    def supported_types(self) -> tuple[str, ...]:
        return ML_SUPPORTED_TYPES

    def parse(self, text: str) -> ParsedMetrics:
        lines = text.splitlines()
        metrics: dict[str, MetricValue] = {}
        progress = 0.0

        epoch = _last_epoch(lines)
        if epoch is not None:
            current, total = epoch
            metrics["epoch"] = MetricValue.of_int(current)
            metrics["total_epochs"] = MetricValue.of_int(total)
            if total > 0:
                progress = current / total

        for metric_name, regex in (
            ("loss", _LOSS),
            ("accuracy", _ACCURACY),
            ("learning_rate", _LEARNING_RATE),
        ):
            value = _last_float(lines, regex)
            if value is not None:
                metrics[metric_name] = MetricValue.of_float(value)

        return ParsedMetrics(
            progress=progress,
            metrics=metrics,
            phase=_detect_phase(text),
            errors=tuple(_detect_errors(lines)),
        )

    def can_parse(self, text: str) -> bool:
        lines = text.splitlines()
        return (
            _last_epoch(lines) is not None
            or _last_float(lines, _LOSS) is not None
            or "epoch" in text.lower()
        )


def _last_epoch(lines: list[str]) -> tuple[int, int] | None:
    for line in reversed(lines):
        match = _EPOCH.search(line)
        if match is not None:
            return int(match.group(1)), int(match.group(2))
    return None


def _last_float(lines: list[str], regex: re.Pattern[str]) -> float | None:
    for line in reversed(lines):
        match = regex.search(line)
        if match is None:
            continue
        try:
            return float(match.group(1))
        except ValueError:
            continue
    return None


def _detect_phase(text: str) -> str | None:
    for phase, regex in _PHASES:
        if regex.search(text):
            return phase
    return None


def _detect_errors(lines: list[str]) -> list[str]:
    errors: list[str] = []
    for line in lines:
        if _NAN.search(line):
            errors.append(NAN_LOSS_ERROR)
        if _OOM_MARKER in line:
            errors.append(GPU_OOM_ERROR)
        if _ERROR_MARKER in line.lower():
            errors.append(line)
    return errors
