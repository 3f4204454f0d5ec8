"""Tests for the debounced file watcher."""

import time
from pathlib import Path

import pytest
from watchdog.events import FileCreatedEvent, FileDeletedEvent, FileModifiedEvent, FileMovedEvent

from duplex.config import Config
from duplex.parsers import ParserRegistry
from duplex.parsers.claude_code import ClaudeCodeParser
from duplex.sync.watcher import (
    FileWatcher,
    PathNotFoundError,
    discover_and_watch,
    expand_path,
)


def _wait_for_event(watcher: FileWatcher, timeout: float = 2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        event = watcher.try_recv()
        if event is not None:
            return event
        time.sleep(0.01)
    return None


class TestFileWatcher:
    """Tests for FileWatcher."""

    def setup_method(self):
        """Set up test fixtures."""
        self.watcher = FileWatcher(debounce_seconds=60)

    def teardown_method(self):
        """Clean up."""
        self.watcher._handler.stop()

    def test_watch_missing_path(self, tmp_path):
        with pytest.raises(PathNotFoundError):
            self.watcher.watch(tmp_path / "missing", "claude-code")

    def test_watch_and_unwatch(self, tmp_path):
        self.watcher.watch(tmp_path, "claude-code")

        assert self.watcher.watched_count() == 1
        assert self.watcher.watched_paths() == [tmp_path.resolve()]
        assert self.watcher.unwatch(tmp_path) is True
        assert self.watcher.unwatch(tmp_path) is False
        assert self.watcher.watched_count() == 0

    def test_parser_for_prefers_deepest_directory(self, tmp_path):
        inner = tmp_path / "inner"
        inner.mkdir()
        self.watcher.watch(tmp_path, "outer-parser")
        self.watcher.watch(inner, "inner-parser")

        assert self.watcher.parser_for(inner / "a.jsonl") == "inner-parser"
        assert self.watcher.parser_for(tmp_path / "b.jsonl") == "outer-parser"
        assert self.watcher.parser_for("/somewhere/else.jsonl") is None

    def test_try_recv_empty(self):
        assert self.watcher.try_recv() is None

    def test_flush_reports_matching_file(self, tmp_path):
        session = tmp_path / "s.jsonl"
        session.write_text("{}\n")
        self.watcher.watch(tmp_path, "claude-code", ["*.jsonl"])

        self.watcher._handler.dispatch(FileModifiedEvent(str(session)))
        assert self.watcher.try_recv() is None

        self.watcher.flush()

        event = self.watcher.try_recv()
        assert event.path == session.resolve()
        assert event.parser_name == "claude-code"
        assert self.watcher.try_recv() is None

    def test_repeated_events_coalesce(self, tmp_path):
        session = tmp_path / "s.jsonl"
        session.write_text("{}\n")
        self.watcher.watch(tmp_path, "claude-code")

        for _ in range(5):
            self.watcher._handler.dispatch(FileModifiedEvent(str(session)))
        assert self.watcher._handler.pending_count() == 1

        self.watcher.flush()

        assert self.watcher.try_recv() is not None
        assert self.watcher.try_recv() is None

    def test_non_matching_and_deleted_files_ignored(self, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("x")
        self.watcher.watch(tmp_path, "claude-code", ["*.jsonl"])

        self.watcher._handler.dispatch(FileModifiedEvent(str(notes)))
        self.watcher._handler.dispatch(FileDeletedEvent(str(tmp_path / "gone.jsonl")))
        self.watcher.flush()

        assert self.watcher.try_recv() is None

    def test_move_reports_destination(self, tmp_path):
        dest = tmp_path / "s.jsonl"
        dest.write_text("{}\n")
        self.watcher.watch(tmp_path, "claude-code")

        self.watcher._handler.dispatch(FileMovedEvent(str(tmp_path / "s.tmp"), str(dest)))
        self.watcher.flush()

        assert self.watcher.try_recv().path == dest.resolve()

    def test_event_after_quiet_period(self, tmp_path):
        watcher = FileWatcher(debounce_seconds=0.05)
        session = tmp_path / "s.jsonl"
        session.write_text("{}\n")
        watcher.watch(tmp_path, "claude-code")

        watcher._handler.dispatch(FileCreatedEvent(str(session)))

        event = _wait_for_event(watcher)
        assert event is not None
        assert event.path == session.resolve()

    def test_start_stop(self, tmp_path):
        self.watcher.watch(tmp_path, "claude-code")

        with self.watcher:
            assert self.watcher.is_running
        assert not self.watcher.is_running


class TestDiscoverAndWatch:
    """Tests for discover_and_watch."""

    def test_auto_discovers_claude_projects(self, tmp_path):
        projects = tmp_path / "projects"
        projects.mkdir()
        registry = ParserRegistry([ClaudeCodeParser(projects)])
        watcher = FileWatcher()

        count = discover_and_watch(watcher, registry, Config(), projects_dir=projects)

        assert count == 1
        assert watcher.parser_for(projects / "p" / "x.jsonl") == "claude-code"

    def test_missing_projects_dir(self, tmp_path):
        registry = ParserRegistry([ClaudeCodeParser(tmp_path / "absent")])
        watcher = FileWatcher()

        assert discover_and_watch(watcher, registry, Config(), projects_dir=tmp_path / "absent") == 0

    def test_disabled_parser_not_watched(self, tmp_path):
        projects = tmp_path / "projects"
        projects.mkdir()
        registry = ParserRegistry([ClaudeCodeParser(projects)])
        config = Config()
        config.parsers.enabled = []

        assert discover_and_watch(FileWatcher(), registry, config, projects_dir=projects) == 0

    def test_additional_paths(self, tmp_path):
        projects = tmp_path / "projects"
        project = projects / "-work-app"
        project.mkdir(parents=True)
        unknown = tmp_path / "elsewhere"
        unknown.mkdir()
        registry = ParserRegistry([ClaudeCodeParser(projects)])
        config = Config()
        config.discovery.auto_discover = False
        config.discovery.additional_paths = [
            str(project),
            str(unknown),
            str(tmp_path / "missing"),
        ]
        watcher = FileWatcher()

        count = discover_and_watch(watcher, registry, config)

        assert count == 1
        assert watcher.watched_paths() == [project.resolve()]


def test_expand_path():
    assert expand_path("~/logs") == Path.home() / "logs"
    assert expand_path("/abs/path") == Path("/abs/path")
