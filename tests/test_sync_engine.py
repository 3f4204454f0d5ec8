"""Tests for the sync engine."""

from pathlib import Path
from unittest.mock import Mock

import pytest

from duplex.auth.errors import NotAuthenticatedError, TokenExpiredError
from duplex.parsers import ParserRegistry
from duplex.parsers.claude_code import ClaudeCodeParser
from duplex.sync.api_client import ExtractionResponse
from duplex.sync.http_client import DuplexAuthError, DuplexClientError
from duplex.sync.state import SyncStateStore, SyncStatus
from duplex.sync.sync_engine import SyncEngine, UnknownParserError, compute_hash
from duplex.sync.watcher import FileChangeEvent

NOW = 1_700_000_000


class TestComputeHash:
    """Tests for compute_hash."""

    def test_hex_sha256(self):
        digest = compute_hash(b"")

        assert digest == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert len(compute_hash(b"x")) == 64

    def test_deterministic(self):
        assert compute_hash(b"same bytes") == compute_hash(b"same bytes")
        assert compute_hash("hello world") == compute_hash("hello world")

    def test_different_content_differs(self):
        assert compute_hash("hello world") != compute_hash("different content")

    def test_str_hashes_as_utf8(self):
        assert compute_hash("héllo") == compute_hash("héllo".encode("utf-8"))


class TestSyncEngine:
    """Tests for SyncEngine."""

    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path: Path):
        self.dir = tmp_path / "projects"
        self.dir.mkdir()
        self.store = SyncStateStore(db_path=tmp_path / "sync.db")
        self.client = Mock()
        self.client.upload_conversation.return_value = ExtractionResponse(workflow_id="wf-1")
        self.tokens = Mock()
        self.tokens.get_valid_token.return_value = "user-token"
        self.engine = SyncEngine(
            store=self.store,
            registry=ParserRegistry([ClaudeCodeParser(self.dir)]),
            client=self.client,
            token_provider=self.tokens,
            clock=lambda: NOW,
        )
        yield
        self.store.close()

    def _file(self, name: str, content: str) -> Path:
        path = self.dir / name
        path.write_text(content)
        return path

    def _event(self, path: Path, parser_name: str = "claude-code") -> FileChangeEvent:
        return FileChangeEvent(path=path, parser_name=parser_name)

    def test_handle_file_change_queues_new_file(self):
        path = self._file("a.jsonl", "one\n")

        assert self.engine.handle_file_change(self._event(path)) is True

        assert self.engine.queue_len() == 1
        state = self.store.get(str(path))
        assert state.status == SyncStatus.PENDING
        assert state.content_hash == compute_hash(b"one\n")
        assert state.last_modified_at == NOW

    def test_handle_file_change_is_idempotent(self):
        path = self._file("a.jsonl", "one\n")
        self.engine.handle_file_change(self._event(path))
        self.engine.process_all()

        assert self.engine.handle_file_change(self._event(path)) is False
        assert self.engine.queue_len() == 0
        assert self.store.get(str(path)).status == SyncStatus.COMPLETE

    def test_handle_file_change_missing_file(self):
        with pytest.raises(OSError):
            self.engine.handle_file_change(self._event(self.dir / "gone.jsonl"))

    def test_process_next_empty_queue(self):
        assert self.engine.process_next() is None
        self.client.upload_conversation.assert_not_called()

    def test_process_next_uploads_and_completes(self):
        path = self._file("a.jsonl", "one\n")
        self.engine.handle_file_change(self._event(path))

        assert self.engine.process_next() == "wf-1"

        conversation = self.client.upload_conversation.call_args[0][0]
        assert conversation.content == "one\n"
        assert conversation.source == "claude-code"
        kwargs = self.client.upload_conversation.call_args[1]
        assert kwargs == {"workspace_id": "default", "token": "user-token"}
        state = self.store.get(str(path))
        assert state.status == SyncStatus.COMPLETE
        assert state.workflow_id == "wf-1"

    def test_fifo_order(self):
        first = self._file("first.jsonl", "1\n")
        second = self._file("second.jsonl", "2\n")
        self.engine.handle_file_change(self._event(first))
        self.engine.handle_file_change(self._event(second))

        self.engine.process_all()

        uploaded = [c[0][0].source_path for c in self.client.upload_conversation.call_args_list]
        assert uploaded == [str(first), str(second)]

    def test_process_all_continues_after_failure(self):
        paths = [self._file(f"{n}.jsonl", f"{n}\n") for n in ("a", "b", "c")]
        for path in paths:
            self.engine.handle_file_change(self._event(path))
        self.client.upload_conversation.side_effect = [
            ExtractionResponse(workflow_id="wf-a"),
            DuplexClientError("boom", status_code=500),
            ExtractionResponse(workflow_id="wf-c"),
        ]

        assert self.engine.process_all() == 2

        assert self.engine.queue_len() == 0
        assert self.store.get(str(paths[0])).status == SyncStatus.COMPLETE
        assert self.store.get(str(paths[1])).status == SyncStatus.ERROR
        assert self.store.get(str(paths[2])).status == SyncStatus.COMPLETE

    def test_auth_rejection_surfaces(self):
        path = self._file("a.jsonl", "one\n")
        self.engine.handle_file_change(self._event(path))
        self.client.upload_conversation.side_effect = DuplexAuthError("nope", status_code=401)

        with pytest.raises(NotAuthenticatedError):
            self.engine.process_next()

        assert self.store.get(str(path)).status == SyncStatus.ERROR

    def test_unknown_parser(self):
        path = self._file("a.jsonl", "one\n")
        self.engine.handle_file_change(self._event(path, parser_name="cursor"))

        with pytest.raises(UnknownParserError):
            self.engine.process_next()

        assert self.store.get(str(path)).status == SyncStatus.ERROR
        self.client.upload_conversation.assert_not_called()

    def test_superseded_item_skipped(self):
        """An item whose file changed again is dropped; the newer item uploads."""
        path = self._file("a.jsonl", "one\n")
        self.engine.handle_file_change(self._event(path))
        path.write_text("two\n")
        self.engine.handle_file_change(self._event(path))

        assert self.engine.process_next() is None
        self.client.upload_conversation.assert_not_called()

        assert self.engine.process_next() == "wf-1"
        assert self.client.upload_conversation.call_args[0][0].content == "two\n"

    def test_change_during_upload_stays_pending(self):
        path = self._file("a.jsonl", "one\n")
        self.engine.handle_file_change(self._event(path))

        def upload(conversation, workspace_id, token):
            path.write_text("two\n")
            self.engine.handle_file_change(self._event(path))
            return ExtractionResponse(workflow_id="wf-1")

        self.client.upload_conversation.side_effect = upload

        assert self.engine.process_next() == "wf-1"

        state = self.store.get(str(path))
        assert state.status == SyncStatus.PENDING
        assert state.content_hash == compute_hash(b"two\n")
        assert self.engine.queue_len() == 1

    def test_failure_does_not_clobber_newer_change(self):
        path = self._file("a.jsonl", "one\n")
        self.engine.handle_file_change(self._event(path))

        def upload(conversation, workspace_id, token):
            path.write_text("two\n")
            self.engine.handle_file_change(self._event(path))
            raise DuplexClientError("boom")

        self.client.upload_conversation.side_effect = upload

        with pytest.raises(DuplexClientError):
            self.engine.process_next()

        assert self.store.get(str(path)).status == SyncStatus.PENDING

    def test_token_falls_back_to_static(self):
        self.tokens.get_valid_token.side_effect = NotAuthenticatedError("no login")
        self.engine.fallback_token = "static-token"
        path = self._file("a.jsonl", "one\n")
        self.engine.handle_file_change(self._event(path))

        self.engine.process_next()

        assert self.client.upload_conversation.call_args[1]["token"] == "static-token"

    def test_expired_token_without_fallback_sends_none(self):
        self.tokens.get_valid_token.side_effect = TokenExpiredError("expired")
        path = self._file("a.jsonl", "one\n")
        self.engine.handle_file_change(self._event(path))

        self.engine.process_next()

        assert self.client.upload_conversation.call_args[1]["token"] is None

    def test_status_counts(self):
        self.engine.handle_file_change(self._event(self._file("a.jsonl", "1\n")))
        self.engine.handle_file_change(self._event(self._file("b.jsonl", "2\n")))
        self.engine.process_next()

        counts = self.engine.status_counts()

        assert counts.complete == 1
        assert counts.pending == 1


class TestRecover:
    """Tests for SyncEngine.recover."""

    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path: Path):
        self.dir = tmp_path
        self.store = SyncStateStore(db_path=tmp_path / "sync.db")
        self.client = Mock()
        self.client.upload_conversation.return_value = ExtractionResponse(workflow_id="wf-r")
        self.engine = SyncEngine(
            store=self.store,
            registry=ParserRegistry([ClaudeCodeParser(tmp_path)]),
            client=self.client,
            fallback_token="static",
            clock=lambda: NOW,
        )
        yield
        self.store.close()

    def test_requeues_pending_and_syncing(self):
        a = self.dir / "a.jsonl"
        a.write_text("a\n")
        b = self.dir / "b.jsonl"
        b.write_text("b\n")
        self.store.mark_pending(str(a), compute_hash(b"a\n"), 20)
        self.store.mark_pending(str(b), compute_hash(b"b\n"), 10)
        self.store.mark_syncing(str(b))

        assert self.engine.recover(lambda path: "claude-code") == 2

        assert self.store.get(str(b)).status == SyncStatus.PENDING
        assert self.engine.process_all() == 2
        uploaded = [c[0][0].source_path for c in self.client.upload_conversation.call_args_list]
        assert uploaded == [str(b), str(a)]

    def test_changed_file_uses_new_hash(self):
        a = self.dir / "a.jsonl"
        a.write_text("new\n")
        self.store.mark_pending(str(a), compute_hash(b"old\n"), 10)

        assert self.engine.recover(lambda path: "claude-code") == 1

        assert self.store.get(str(a)).content_hash == compute_hash(b"new\n")
        assert self.engine.process_next() == "wf-r"

    def test_missing_file_marked_error(self):
        gone = self.dir / "gone.jsonl"
        self.store.mark_pending(str(gone), "h", 10)

        assert self.engine.recover(lambda path: "claude-code") == 0

        assert self.store.get(str(gone)).status == SyncStatus.ERROR

    def test_unowned_file_marked_error(self):
        a = self.dir / "a.jsonl"
        a.write_text("a\n")
        self.store.mark_pending(str(a), compute_hash(b"a\n"), 10)

        assert self.engine.recover(lambda path: None) == 0

        assert self.store.get(str(a)).status == SyncStatus.ERROR
        assert self.engine.queue_len() == 0

    def test_complete_records_left_alone(self):
        a = self.dir / "a.jsonl"
        a.write_text("a\n")
        self.store.mark_pending(str(a), compute_hash(b"a\n"), 10)
        self.store.mark_syncing(str(a))
        self.store.mark_complete(str(a), "wf-old")

        assert self.engine.recover(lambda path: "claude-code") == 0
        assert self.store.get(str(a)).status == SyncStatus.COMPLETE
