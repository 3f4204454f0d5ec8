"""Conversation parsers - turn agent log files into uploadable conversations.

Each parser knows one coding agent's on-disk layout: where its logs live,
which files are conversations, and how to read them. Parsers are looked up
by name in an ordered registry.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Protocol, runtime_checkable

__all__ = [
    "Conversation",
    "ConversationFile",
    "ConversationParser",
    "ParserError",
    "ParserRegistry",
]

logger = logging.getLogger(__name__)


class ParserError(Exception):
    """A conversation file could not be read or is in an unsupported format."""

    pass


@dataclass
class ConversationFile:
    """A discovered conversation file."""

    path: Path
    session_id: Optional[str] = None
    project_path: Optional[str] = None


@dataclass
class Conversation:
    """A parsed conversation ready for upload."""

    source_path: str
    source: str
    content: str
    session_id: Optional[str] = None
    project_path: Optional[str] = None


@runtime_checkable
class ConversationParser(Protocol):
    """Interface every conversation parser implements."""

    @property
    def name(self) -> str: ...

    def detect(self, path: Path) -> bool: ...

    def discover(self, path: Path) -> list[ConversationFile]: ...

    def parse(self, file: Path) -> Conversation: ...

    def watch_patterns(self) -> list[str]: ...


class ParserRegistry:
    """Ordered collection of parsers; the first match wins."""

    def __init__(self, parsers: Optional[Iterable[ConversationParser]] = None):
        self._parsers: list[ConversationParser] = []
        for parser in parsers or ():
            self.register(parser)

    @classmethod
    def default(cls) -> "ParserRegistry":
        """Registry with the built-in parsers."""
        from .claude_code import ClaudeCodeParser

        return cls([ClaudeCodeParser()])

    def register(self, parser: ConversationParser) -> None:
        logger.debug(f"Registered parser: {parser.name}")
        self._parsers.append(parser)

    def get(self, name: str) -> Optional[ConversationParser]:
        for parser in self._parsers:
            if parser.name == name:
                return parser
        return None

    def all(self) -> list[ConversationParser]:
        return list(self._parsers)

    def detect(self, path: Path) -> Optional[ConversationParser]:
        """First parser that recognizes `path`, if any."""
        for parser in self._parsers:
            if parser.detect(path):
                return parser
        return None

    def get_enabled(self, names: Iterable[str]) -> list[ConversationParser]:
        """Parsers for the given names, in the given order; unknown names are skipped."""
        enabled = []
        for name in names:
            parser = self.get(name)
            if parser is None:
                logger.warning(f"Unknown parser in config: {name}")
                continue
            enabled.append(parser)
        return enabled

    def __len__(self) -> int:
        return len(self._parsers)
