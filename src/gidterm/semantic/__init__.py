"""Structured metric extraction from raw task output."""

from gidterm.semantic.metrics import MetricType, MetricValue, ParsedMetrics
from gidterm.semantic.parsers import MLTrainingParser, OutputParser, ParserPatterns, RegexParser
from gidterm.semantic.registry import ParserRegistry, build_default_registry

__all__ = [
    "MLTrainingParser",
    "MetricType",
    "MetricValue",
    "OutputParser",
    "ParsedMetrics",
    "ParserPatterns",
    "ParserRegistry",
    "RegexParser",
    "build_default_registry",
]
