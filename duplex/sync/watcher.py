"""Directory watcher with per-file debouncing.

This module provides:
- FileWatcher: Watches conversation directories recursively using watchdog
- Debouncing: A file is reported once it has been quiet for the debounce window
- discover_and_watch: Registers the known agent log locations from config
"""

import fnmatch
import logging
import os
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config import Config, DEFAULT_DEBOUNCE_SECONDS
from ..parsers import ParserRegistry
from ..parsers.claude_code import default_projects_dir

__all__ = [
    "FileWatcher",
    "FileChangeEvent",
    "WatcherError",
    "PathNotFoundError",
    "discover_and_watch",
    "expand_path",
]

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS = ["*.jsonl"]


class WatcherError(Exception):
    """File watching failed."""

    pass


class PathNotFoundError(WatcherError):
    """Directory to watch does not exist."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Path not found: {path}")


@dataclass
class FileChangeEvent:
    """A file that changed and is ready to sync."""

    path: Path
    parser_name: str


@dataclass
class _WatchedDirectory:
    path: Path
    parser_name: str
    patterns: list[str]
    handle: object = None


def _normalize(path: Union[str, Path]) -> Path:
    return Path(path).expanduser().resolve()


class _DebouncedHandler(FileSystemEventHandler):
    """Coalesces raw events per path and reports each path once it goes quiet."""

    def __init__(self, watcher: "FileWatcher", debounce_seconds: float):
        super().__init__()
        self._watcher = watcher
        self._debounce_seconds = debounce_seconds
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in ("deleted", "opened", "closed_no_write"):
            return

        path = getattr(event, "dest_path", "") or event.src_path
        if isinstance(path, bytes):
            path = path.decode("utf-8", errors="replace")
        self._touch(path)

    def _touch(self, path: str) -> None:
        """Restart the quiet window for `path`."""
        with self._lock:
            existing = self._timers.get(path)
            if existing:
                existing.cancel()
            timer = threading.Timer(self._debounce_seconds, self._fire, args=(path,))
            timer.daemon = True
            self._timers[path] = timer
            timer.start()

    def _fire(self, path: str) -> None:
        with self._lock:
            timer = self._timers.get(path)
            # A newer event restarted the window
            if timer is None or timer is not threading.current_thread():
                return
            del self._timers[path]
        self._watcher._emit(Path(path))

    def flush(self) -> None:
        """Report every pending path now."""
        with self._lock:
            pending = list(self._timers.items())
            self._timers.clear()
        for path, timer in pending:
            timer.cancel()
            self._watcher._emit(Path(path))

    def pending_count(self) -> int:
        with self._lock:
            return len(self._timers)

    def stop(self) -> None:
        """Cancel pending timers without reporting."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()


class FileWatcher:
    """Watches directories for conversation file changes.

    Each watched directory is tied to a parser. A changed file belongs to the
    most specific watched directory containing it, and is reported only if it
    matches that directory's glob patterns.
    """

    def __init__(self, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS):
        """Initialize the file watcher.

        Args:
            debounce_seconds: Quiet period before a changed file is reported
        """
        self.debounce_seconds = debounce_seconds
        self._events: "queue.Queue[FileChangeEvent]" = queue.Queue()
        self._watched: dict[Path, _WatchedDirectory] = {}
        self._lock = threading.Lock()
        self._handler = _DebouncedHandler(self, debounce_seconds)
        self._observer = Observer()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def watch(
        self,
        path: Union[str, Path],
        parser_name: str,
        patterns: Optional[list[str]] = None,
    ) -> None:
        """Watch `path` recursively on behalf of `parser_name`.

        Raises:
            PathNotFoundError: If the path does not exist
            WatcherError: If the OS refuses the watch
        """
        directory = _normalize(path)
        if not directory.exists():
            raise PathNotFoundError(directory)

        with self._lock:
            if directory in self._watched:
                self._unschedule(self._watched.pop(directory))
            try:
                handle = self._observer.schedule(self._handler, str(directory), recursive=True)
            except OSError as e:
                raise WatcherError(f"Cannot watch {directory}: {e}") from e
            self._watched[directory] = _WatchedDirectory(
                path=directory,
                parser_name=parser_name,
                patterns=list(patterns or DEFAULT_PATTERNS),
                handle=handle,
            )

        logger.info(f"Watching {directory} with parser '{parser_name}'")

    def unwatch(self, path: Union[str, Path]) -> bool:
        """Stop watching `path`. Returns False if it was not watched."""
        directory = _normalize(path)
        with self._lock:
            entry = self._watched.pop(directory, None)
            if entry is None:
                return False
            self._unschedule(entry)
        logger.info(f"Stopped watching {directory}")
        return True

    def _unschedule(self, entry: _WatchedDirectory) -> None:
        if entry.handle is None:
            return
        try:
            self._observer.unschedule(entry.handle)
        except KeyError:
            pass

    def watched_count(self) -> int:
        with self._lock:
            return len(self._watched)

    def watched_paths(self) -> list[Path]:
        with self._lock:
            return list(self._watched)

    def _owner(self, path: Path) -> Optional[_WatchedDirectory]:
        """Longest watched ancestor of `path`."""
        best: Optional[_WatchedDirectory] = None
        with self._lock:
            for directory, entry in self._watched.items():
                if path == directory or directory in path.parents:
                    if best is None or len(directory.parts) > len(best.path.parts):
                        best = entry
        return best

    def parser_for(self, path: Union[str, Path]) -> Optional[str]:
        """Name of the parser owning `path`, if it lies in a watched directory."""
        owner = self._owner(_normalize(path))
        return owner.parser_name if owner else None

    def _emit(self, path: Path) -> None:
        path = _normalize(path)
        owner = self._owner(path)
        if owner is None:
            return
        if not any(fnmatch.fnmatch(path.name, pattern) for pattern in owner.patterns):
            return
        if path.is_dir():
            return
        self._events.put(FileChangeEvent(path=path, parser_name=owner.parser_name))
        logger.debug(f"File ready to sync: {path} ({owner.parser_name})")

    def try_recv(self) -> Optional[FileChangeEvent]:
        """Next ready event, or None without blocking."""
        try:
            return self._events.get_nowait()
        except queue.Empty:
            return None

    def flush(self) -> None:
        """Report files still inside their debounce window immediately."""
        self._handler.flush()

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return
        self._observer.start()
        self._running = True
        logger.info(f"File watcher started ({self.watched_count()} directories)")

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return
        self._handler.stop()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False
        logger.info("File watcher stopped")

    def __enter__(self) -> "FileWatcher":
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()


def expand_path(path: str) -> Path:
    """Expand a leading ~ to the home directory."""
    return Path(os.path.expanduser(path))


def discover_and_watch(
    watcher: FileWatcher,
    registry: ParserRegistry,
    config: Config,
    projects_dir: Optional[Path] = None,
) -> int:
    """Watch the known conversation locations.

    Args:
        watcher: Watcher to register directories with
        registry: Parsers available for detection
        config: Discovery and parser settings
        projects_dir: Claude Code projects directory (default ~/.claude/projects)

    Returns:
        Number of directories now watched by this call
    """
    count = 0
    enabled = {parser.name for parser in registry.get_enabled(config.parsers.enabled)}

    if config.discovery.auto_discover:
        claude_projects = projects_dir or default_projects_dir()
        parser = registry.get("claude-code")
        if parser is not None and parser.name in enabled:
            if claude_projects.exists():
                watcher.watch(claude_projects, parser.name, parser.watch_patterns())
                count += 1
            else:
                logger.debug(f"Claude Code projects directory not found: {claude_projects}")

    for raw_path in config.discovery.additional_paths:
        path = expand_path(raw_path)
        if not path.exists():
            logger.warning(f"Configured path does not exist: {path}")
            continue
        parser = registry.detect(path)
        if parser is None:
            logger.warning(f"No parser found for path: {path}")
            continue
        watcher.watch(path, parser.name, parser.watch_patterns())
        count += 1

    logger.info(f"Discovered and watching {count} directories")
    return count
