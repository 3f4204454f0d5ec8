"""Tests for the OAuth loopback callback server."""

import gc
import socket
import threading
from unittest.mock import MagicMock, Mock

import pytest
import requests

from duplex.auth.callback_server import (
    CallbackResult,
    LoopbackServer,
    _CallbackHandler,
    _OneShotHTTPServer,
)
from duplex.auth.errors import AuthorizationFailedError, CallbackTimeoutError, OAuthError


def _make_handler(path: str, server=None) -> _CallbackHandler:
    """Build a handler without a socket, with response methods mocked."""
    handler = _CallbackHandler.__new__(_CallbackHandler)
    handler.server = server or MagicMock()
    handler.path = path
    handler.requestline = f"GET {path} HTTP/1.1"
    handler.client_address = ("127.0.0.1", 12345)
    handler.request_version = "HTTP/1.1"
    handler.headers = {}
    handler.send_response = Mock()
    handler.send_header = Mock()
    handler.end_headers = Mock()
    handler.wfile = MagicMock()
    return handler


def _real_server() -> _OneShotHTTPServer:
    server = _OneShotHTTPServer.__new__(_OneShotHTTPServer)
    server.lock = threading.Lock()
    server.callback_received = threading.Event()
    server.outcome = None
    return server


class TestCallbackHandler:
    """Tests for the HTTP callback handler."""

    def test_callback_delivers_code(self):
        """Code and state are delivered as a CallbackResult."""
        server = _real_server()
        handler = _make_handler("/callback?code=auth-code-456&state=s-123", server)

        handler.do_GET()

        assert server.callback_received.is_set()
        assert server.outcome == CallbackResult(code="auth-code-456", state="s-123")
        handler.send_response.assert_called_with(200)

    def test_success_page_closes_window(self):
        """The success page tries to close the browser tab."""
        handler = _make_handler("/callback?code=abc", _real_server())

        handler.do_GET()

        body = handler.wfile.write.call_args[0][0]
        assert b"window.close()" in body

    def test_callback_delivers_provider_error(self):
        """?error= resolves with AuthorizationFailedError and serves an error page."""
        server = _real_server()
        handler = _make_handler(
            "/callback?error=access_denied&error_description=User+cancelled", server
        )

        handler.do_GET()

        assert isinstance(server.outcome, AuthorizationFailedError)
        assert server.outcome.error == "access_denied"
        assert server.outcome.description == "User cancelled"
        handler.send_response.assert_called_with(200)
        assert b"access_denied" in handler.wfile.write.call_args[0][0]

    def test_error_page_escapes_html(self):
        """Provider-controlled text is escaped in the error page."""
        handler = _make_handler(
            "/callback?error=bad&error_description=%3Cscript%3Ealert(1)%3C/script%3E",
            _real_server(),
        )

        handler.do_GET()

        body = handler.wfile.write.call_args[0][0]
        assert b"<script>alert(1)" not in body
        assert b"&lt;script&gt;" in body

    def test_missing_code_is_400(self):
        """Neither code nor error -> 400 and nothing delivered."""
        server = _real_server()
        handler = _make_handler("/callback?state=only", server)

        handler.do_GET()

        handler.send_response.assert_called_with(400)
        assert not server.callback_received.is_set()

    def test_wrong_path_is_404(self):
        """Test handler returns 404 for non-callback paths."""
        server = _real_server()
        handler = _make_handler("/other-path", server)

        handler.do_GET()

        handler.send_response.assert_called_with(404)
        assert not server.callback_received.is_set()

    def test_second_callback_does_not_replace_first(self):
        """Only the first callback resolves the server."""
        server = _real_server()
        _make_handler("/callback?code=first", server).do_GET()
        second = _make_handler("/callback?code=second", server)

        second.do_GET()

        assert server.outcome.code == "first"
        second.send_response.assert_called_with(200)


class TestLoopbackServer:
    """Tests against a real listening socket."""

    def test_binds_random_loopback_port(self):
        with LoopbackServer() as server:
            assert server.port > 0
            assert server.redirect_uri == f"http://127.0.0.1:{server.port}/callback"

    def test_wait_for_callback_returns_code(self):
        """A real GET to /callback resolves wait_for_callback."""
        with LoopbackServer() as server:
            def simulate_callback():
                requests.get(
                    server.redirect_uri,
                    params={"code": "test-auth-code", "state": "xyz"},
                    timeout=2,
                )

            thread = threading.Thread(target=simulate_callback, daemon=True)
            thread.start()

            result = server.wait_for_callback(timeout=5)
            thread.join(timeout=2)

        assert result.code == "test-auth-code"
        assert result.state == "xyz"

    def test_wait_for_callback_raises_provider_error(self):
        with LoopbackServer() as server:
            response = requests.get(
                server.redirect_uri, params={"error": "access_denied"}, timeout=2
            )

            assert response.status_code == 200
            with pytest.raises(AuthorizationFailedError) as exc_info:
                server.wait_for_callback(timeout=1)

        assert exc_info.value.error == "access_denied"

    def test_single_delivery(self):
        """Later callbacks get a page but do not change the outcome."""
        with LoopbackServer() as server:
            first = requests.get(server.redirect_uri, params={"code": "one"}, timeout=2)
            second = requests.get(server.redirect_uri, params={"code": "two"}, timeout=2)

            assert first.status_code == 200
            assert second.status_code == 200
            assert server.wait_for_callback(timeout=1).code == "one"

    def test_timeout(self):
        with LoopbackServer() as server:
            with pytest.raises(CallbackTimeoutError):
                server.wait_for_callback(timeout=0.1)

    def test_close_releases_port(self):
        """After close the port can be bound again."""
        server = LoopbackServer()
        port = server.port

        server.close()

        assert server.is_closed
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", port))

    def test_dropped_server_releases_port(self):
        """Discarding an unclosed server frees its port."""
        server = LoopbackServer()
        port = server.port

        del server
        gc.collect()

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", port))

    def test_close_is_idempotent(self):
        server = LoopbackServer()

        server.close()
        server.close()

        assert server.is_closed

    def test_wait_after_close_raises(self):
        server = LoopbackServer()
        server.close()

        with pytest.raises(OAuthError):
            server.wait_for_callback(timeout=0.1)
