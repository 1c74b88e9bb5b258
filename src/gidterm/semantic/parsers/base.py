"""Parser capability shared by all output parsers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from gidterm.core.errors import GidtermError
from gidterm.semantic.metrics import ParsedMetrics


class ParseError(GidtermError):
    """Raised by a parser that cannot interpret its input at all."""


@runtime_checkable
class OutputParser(Protocol):
    """Turns a block of task output into ``ParsedMetrics``."""

    @property
    def name(self) -> str: ...

    def parse(self, text: str) -> ParsedMetrics: ...

    def can_parse(self, text: str) -> bool: ...

    def supported_types(self) -> tuple[str, ...]: ...
