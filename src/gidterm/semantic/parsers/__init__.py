"""Output parser implementations."""

from gidterm.semantic.parsers.base import OutputParser, ParseError
from gidterm.semantic.parsers.ml_training import MLTrainingParser
from gidterm.semantic.parsers.regex_parser import (
    MetricPattern,
    ParserPatterns,
    ProgressPattern,
    RegexParser,
)

__all__ = [
    "MLTrainingParser",
    "MetricPattern",
    "OutputParser",
    "ParseError",
    "ParserPatterns",
    "ProgressPattern",
    "RegexParser",
]
