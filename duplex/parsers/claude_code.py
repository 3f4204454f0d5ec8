"""Claude Code session logs.

Claude Code keeps one directory per project under ~/.claude/projects. The
directory name is the project's absolute path with "/" replaced by "-", and
each session is a `<uuid>.jsonl` file inside it.
"""

import logging
from pathlib import Path
from typing import Optional

from . import Conversation, ConversationFile, ParserError

__all__ = ["ClaudeCodeParser", "default_projects_dir"]

logger = logging.getLogger(__name__)

SESSION_SUFFIX = ".jsonl"
UUID_LENGTH = 36


def default_projects_dir() -> Path:
    return Path.home() / ".claude" / "projects"


def decode_project_path(encoded: str) -> Optional[str]:
    """Turn a directory name like -Users-name-project into /Users/name/project."""
    if not encoded.startswith("-"):
        return None
    return encoded.replace("-", "/")


def extract_session_id(filename: str) -> Optional[str]:
    """Session id from a UUID-named `.jsonl` file, else None."""
    if not filename.endswith(SESSION_SUFFIX):
        return None
    stem = filename[: -len(SESSION_SUFFIX)]
    if len(stem) == UUID_LENGTH and stem.count("-") == 4:
        return stem
    return None


class ClaudeCodeParser:
    """Parser for Claude Code conversation files."""

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = Path(base_dir) if base_dir else default_projects_dir()

    @property
    def name(self) -> str:
        return "claude-code"

    def watch_patterns(self) -> list[str]:
        return ["*.jsonl"]

    def detect(self, path: Path) -> bool:
        """Base dir, a project dir inside it, or a session file inside a project dir."""
        path = Path(path)
        if path == self.base_dir or path.parent == self.base_dir:
            return True
        return (
            path.is_file()
            and path.suffix == SESSION_SUFFIX
            and path.parent.parent == self.base_dir
        )

    def _session_file(self, path: Path, project_path: Optional[str]) -> Optional[ConversationFile]:
        session_id = extract_session_id(path.name)
        if session_id is None:
            return None
        return ConversationFile(path=path, session_id=session_id, project_path=project_path)

    def discover(self, path: Path) -> list[ConversationFile]:
        """Find session files under `path`.

        A directory is searched one level deep: session files directly in it,
        plus session files in each of its subdirectories.
        """
        path = Path(path)
        if path.is_file():
            found = self._session_file(path, decode_project_path(path.parent.name))
            return [found] if found else []
        if not path.is_dir():
            return []

        files = []
        for entry in sorted(path.iterdir()):
            if entry.is_dir():
                project_path = decode_project_path(entry.name)
                try:
                    children = sorted(entry.iterdir())
                except OSError as e:
                    logger.warning(f"Cannot list {entry}: {e}")
                    continue
                for child in children:
                    if child.is_file():
                        found = self._session_file(child, project_path)
                        if found:
                            files.append(found)
            elif entry.is_file():
                found = self._session_file(entry, decode_project_path(path.name))
                if found:
                    files.append(found)
        return files

    def parse(self, file: Path) -> Conversation:
        """Read the raw JSONL; the server does the actual transcript parsing."""
        file = Path(file)
        try:
            # Bytes first so line endings survive and the content hashes like the file
            content = file.read_bytes().decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParserError(f"{file} is not valid UTF-8") from e
        except OSError as e:
            raise ParserError(f"Cannot read {file}: {e}") from e

        return Conversation(
            source_path=str(file),
            source=self.name,
            content=content,
            session_id=extract_session_id(file.name),
            project_path=decode_project_path(file.parent.name),
        )
