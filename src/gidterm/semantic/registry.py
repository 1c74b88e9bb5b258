"""Parser registry with task-type routing and auto-detection."""

from __future__ import annotations

import logging

from gidterm.semantic.metrics import ParsedMetrics
from gidterm.semantic.parsers import MLTrainingParser, OutputParser, ParseError, RegexParser

logger = logging.getLogger(__name__)

NO_PARSER_ERROR = "No suitable parser found"


class ParserRegistry:
    """Owns parsers by name and maps task-type tags to them.

    Registration order is kept for auto-detection. Registering a parser whose
    name or type tag is already taken replaces the earlier owner.
    """

    def __init__(self) -> None:
        self._parsers: dict[str, OutputParser] = {}
        self._type_mappings: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._parsers)

    def register(self, parser: OutputParser) -> None:
        name = parser.name
        if name in self._parsers:
            self._type_mappings = {
                tag: owner for tag, owner in self._type_mappings.items() if owner != name
            }
            logger.debug("Replacing parser %s", name)
        self._parsers[name] = parser
        for task_type in parser.supported_types():
            self._type_mappings[task_type] = name

    def get(self, name: str) -> OutputParser | None:
        return self._parsers.get(name)

    def get_for_type(self, task_type: str) -> OutputParser | None:
        name = self._type_mappings.get(task_type)
        return self._parsers.get(name) if name is not None else None

    def find_parser(self, text: str) -> OutputParser | None:
        """First registered parser that claims it can handle ``text``."""

        for parser in self._parsers.values():
            if parser.can_parse(text):
                return parser
        return None

    def parse(self, task_type: str | None, text: str) -> ParsedMetrics:
        """Parse ``text`` by type hint, then auto-detection; never raises."""

        parser = self.get_for_type(task_type) if task_type else None
        if parser is None:
            parser = self.find_parser(text)
        if parser is None:
            return ParsedMetrics.empty(NO_PARSER_ERROR)
        try:
            return parser.parse(text)
        except (ParseError, ValueError) as error:
            logger.warning("Parser %s rejected output: %s", parser.name, error)
            return ParsedMetrics.empty(f"{parser.name}: {error}")

    def list_parsers(self) -> list[str]:
        return list(self._parsers)

    def type_mappings(self) -> dict[str, str]:
        return dict(self._type_mappings)


def build_default_registry() -> ParserRegistry:
    registry = ParserRegistry()
    registry.register(RegexParser())
    registry.register(MLTrainingParser())
    return registry
