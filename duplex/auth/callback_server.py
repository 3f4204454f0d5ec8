"""Loopback HTTP server that receives a single OAuth redirect.

Binds 127.0.0.1 on an OS-assigned port, serves on a daemon thread, and
resolves exactly once with either the authorization code or the provider's
error. The listening socket is released by close(), by leaving the context
manager, or when the server object is garbage collected.
"""

import html
import logging
import threading
from dataclasses import dataclass
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Optional, Union
from urllib.parse import urlparse, parse_qs

from .errors import AuthorizationFailedError, CallbackTimeoutError, OAuthError

__all__ = ["LoopbackServer", "CallbackResult"]

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/callback"

_PAGE_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head>
    <title>Duplex - {title}</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, system-ui, sans-serif; display: flex; justify-content: center; align-items: center; min-height: 100vh; margin: 0; background: #f3f4f6; }}
        .card {{ background: white; border-radius: 12px; padding: 40px; text-align: center; box-shadow: 0 4px 12px rgba(0,0,0,.1); max-width: 400px; }}
        h1 {{ font-size: 22px; color: {color}; margin: 0 0 8px; }}
        p {{ color: #6b7280; margin: 0 0 4px; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>{title}</h1>
        {body}
    </div>
    {script}
</body>
</html>
"""


def _render(title: str, body: str, color: str = "#111827", script: str = "") -> bytes:
    return _PAGE_TEMPLATE.format(title=title, body=body, color=color, script=script).encode()


_SUCCESS_HTML = _render(
    "Authentication Successful",
    "<p>You can close this window and return to Duplex.</p>",
    script="<script>window.close();</script>",
)

_INVALID_HTML = _render(
    "Invalid Callback",
    "<p>No authorization code received.</p>",
    color="#b91c1c",
)


def _error_html(error: str, description: str) -> bytes:
    return _render(
        "Authentication Failed",
        f"<p>{html.escape(error)}: {html.escape(description)}</p>"
        "<p>You can close this window.</p>",
        color="#b91c1c",
    )


@dataclass
class CallbackResult:
    """Authorization code delivered to the loopback callback."""

    code: str
    state: Optional[str] = None


class _CallbackHandler(BaseHTTPRequestHandler):
    """HTTP handler that captures the authorization callback."""

    def _respond(self, status: int, body: bytes = b"", content_type: str = "text/html") -> None:
        self.send_response(status)
        if body:
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body:
            self.wfile.write(body)

    def do_GET(self):  # noqa: N802 - required by BaseHTTPRequestHandler
        parsed = urlparse(self.path)

        if parsed.path != CALLBACK_PATH:
            self._respond(404, b"Not Found", content_type="text/plain")
            return

        params = parse_qs(parsed.query)
        error = params.get("error", [None])[0]
        code = params.get("code", [None])[0]
        state = params.get("state", [None])[0]

        if error:
            description = params.get("error_description", ["Unknown error"])[0]
            logger.error(f"OAuth error: {error} - {description}")
            self.server.deliver(AuthorizationFailedError(error, description))
            self._respond(200, _error_html(error, description))
            return

        if code:
            if self.server.deliver(CallbackResult(code=code, state=state)):
                logger.info("Received authorization code")
            else:
                logger.debug("Ignoring repeated callback")
            self._respond(200, _SUCCESS_HTML)
            return

        self._respond(400, _INVALID_HTML)

    def log_message(self, format, *args):
        """Route default HTTP server logs to debug."""
        logger.debug(f"Callback server: {format % args}")


class _OneShotHTTPServer(HTTPServer):
    """HTTPServer that remembers the first delivered callback outcome."""

    def __init__(self, server_address, handler_class):
        super().__init__(server_address, handler_class)
        self.lock = threading.Lock()
        self.callback_received = threading.Event()
        self.outcome: Optional[Union[CallbackResult, OAuthError]] = None

    def deliver(self, outcome: Union[CallbackResult, OAuthError]) -> bool:
        """Record the outcome if none has been recorded yet.

        Returns:
            True if this call resolved the server, False if already resolved
        """
        with self.lock:
            if self.callback_received.is_set():
                return False
            self.outcome = outcome
            self.callback_received.set()
            return True


class LoopbackServer:
    """Ephemeral loopback listener for one OAuth redirect."""

    def __init__(self, host: str = "127.0.0.1"):
        self._server: Optional[_OneShotHTTPServer] = _OneShotHTTPServer((host, 0), _CallbackHandler)
        self.port: int = self._server.server_address[1]
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="oauth-callback",
            daemon=True,
        )
        self._thread.start()
        self._close_lock = threading.Lock()
        logger.info(f"OAuth callback server listening on 127.0.0.1:{self.port}")

    @property
    def redirect_uri(self) -> str:
        """Redirect URI to register with the provider."""
        return f"http://127.0.0.1:{self.port}{CALLBACK_PATH}"

    @property
    def is_closed(self) -> bool:
        return self._server is None

    def wait_for_callback(self, timeout: Optional[float] = None) -> CallbackResult:
        """Block until the callback arrives.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            CallbackResult with the authorization code

        Raises:
            AuthorizationFailedError: Provider redirected with an error
            CallbackTimeoutError: Nothing arrived in time
            OAuthError: Server was closed before a callback arrived
        """
        server = self._server
        if server is None:
            raise OAuthError("Callback server already closed")

        if not server.callback_received.wait(timeout=timeout):
            raise CallbackTimeoutError("Authorization timed out (no callback received)")

        outcome = server.outcome
        if isinstance(outcome, OAuthError):
            raise outcome
        if outcome is None:
            raise OAuthError("Failed to receive authorization code")
        return outcome

    def close(self) -> None:
        """Stop serving and release the socket. Safe to call repeatedly."""
        with self._close_lock:
            server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)
        logger.debug(f"OAuth callback server on port {self.port} closed")

    def __enter__(self) -> "LoopbackServer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass
