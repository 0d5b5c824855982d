"""Single-shot loopback HTTP server that captures the OAuth redirect.

:class:`CallbackListener` binds the exact address named by the registered
redirect URI, serves one route on a background thread, and hands the first
outcome (an authorization code or an error) back to the thread blocked in
:meth:`CallbackListener.wait`. The listener must be bound before the
authorization URL is shown to the user, so a fast browser can never hit a
closed port.

Typical usage::

    with CallbackListener(redirect_uri, expected_state=pkce.state) as listener:
        webbrowser.open(authorize_url)
        code = listener.wait()
"""

from __future__ import annotations

import errno
import html
import logging
import queue
import secrets
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from labctl.exceptions import (
    AuthorizationDeniedError,
    CallbackError,
    CallbackTimeoutError,
    ConnectionError_,
    InvalidUsageError,
    LabctlError,
    PortInUseError,
    StateMismatchError,
)
from labctl.models import DEFAULT_CALLBACK_TIMEOUT

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE = 2.0

_SUCCESS_PAGE = (
    "<h1>Authentication Successful</h1>"
    "<p>You can close this window and return to the terminal.</p>"
)


def parse_redirect_uri(redirect_uri: str) -> tuple[str, int, str]:
    """Split a loopback redirect URI into ``(listen_host, port, callback_path)``.

    ``localhost`` is bound as ``127.0.0.1``; a missing path becomes ``/``.

    Raises:
        InvalidUsageError: If the URI is not an ``http://`` URL with a host.
    """
    parsed = urlparse(redirect_uri)
    if parsed.scheme != "http" or not parsed.hostname:
        raise InvalidUsageError(
            f"invalid redirect URI {redirect_uri!r}: expected http://<loopback-host>:<port>/<path>"
        )
    try:
        port = 80 if parsed.port is None else parsed.port
    except ValueError as exc:
        raise InvalidUsageError(f"invalid redirect URI {redirect_uri!r}: {exc}") from exc
    host = parsed.hostname
    if host == "localhost":
        host = "127.0.0.1"
    return host, port, parsed.path or "/"


def _describe_timeout(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds:g} seconds"


class CallbackListener:
    """Receive exactly one authorization redirect on a fixed loopback address.

    Args:
        redirect_uri: The redirect URI registered with the OAuth application.
            Its host, port and path determine where the server listens.
        expected_state: The ``state`` issued for this login attempt. A
            callback carrying any other value is rejected as CSRF.
        timeout: Seconds :meth:`wait` blocks before giving up.
        shutdown_grace: Seconds allowed for the serve thread to stop.
    """

    def __init__(
        self,
        redirect_uri: str,
        expected_state: str,
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        shutdown_grace: float = SHUTDOWN_GRACE,
    ) -> None:
        self._host, self._port, self._path = parse_redirect_uri(redirect_uri)
        self._expected_state = expected_state
        self._timeout = timeout
        self._shutdown_grace = shutdown_grace
        self._results: queue.Queue[tuple[Optional[str], Optional[LabctlError]]] = queue.Queue(
            maxsize=1
        )
        self._finished = threading.Event()
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> tuple[str, int]:
        """The bound ``(host, port)``; the configured address before :meth:`start`."""
        if self._server is not None:
            host, port = self._server.server_address[:2]
            return str(host), int(port)
        return self._host, self._port

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Bind the listening socket and start serving on a daemon thread.

        Raises:
            PortInUseError: If the address is already bound. There is no
                fallback port; the redirect URI is fixed by the OAuth app.
            ConnectionError_: For any other bind failure.
        """
        if self._server is not None:
            return
        try:
            server = HTTPServer((self._host, self._port), self._make_handler())
        except OSError as exc:
            if exc.errno == errno.EADDRINUSE:
                raise PortInUseError(
                    f"port {self._port} on {self._host} is already in use; "
                    "free it and run login again (the redirect URI cannot change)"
                ) from exc
            raise ConnectionError_(
                f"cannot listen on {self._host}:{self._port}: {exc}"
            ) from exc

        self._server = server
        self._thread = threading.Thread(
            target=self._serve,
            args=(server,),
            name="labctl-oauth-callback",
            daemon=True,
        )
        self._thread.start()
        logger.debug("callback server listening on %s:%s%s", self._host, self._port, self._path)

    def wait(self) -> str:
        """Block until the callback arrives and return the authorization code.

        Raises:
            StateMismatchError: The callback's ``state`` was wrong.
            AuthorizationDeniedError: The provider returned ``error``.
            CallbackError: The callback carried no ``code``.
            CallbackTimeoutError: Nothing arrived within the timeout.
        """
        if self._server is None:
            raise RuntimeError("CallbackListener.wait() called before start()")
        try:
            code, error = self._results.get(timeout=self._timeout)
        except queue.Empty:
            raise CallbackTimeoutError(
                f"timed out waiting for authentication ({_describe_timeout(self._timeout)})"
            ) from None
        if error is not None:
            raise error
        if code is None:
            raise CallbackError("no authorization code received")
        return code

    def close(self) -> None:
        """Stop the serve thread (bounded by the grace period) and release the socket."""
        server, self._server = self._server, None
        if server is None:
            return
        stopper = threading.Thread(target=server.shutdown, daemon=True)
        stopper.start()
        stopper.join(self._shutdown_grace)
        server.server_close()
        if self._thread is not None:
            self._thread.join(self._shutdown_grace)
            self._thread = None
        logger.debug("callback server on port %s closed", self._port)

    def __enter__(self) -> CallbackListener:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Request handling
    # ------------------------------------------------------------------ #

    def _serve(self, server: HTTPServer) -> None:
        try:
            server.serve_forever(poll_interval=0.1)
        except Exception as exc:
            self._deliver(None, ConnectionError_(f"callback server failed: {exc}"))

    def _deliver(self, code: Optional[str], error: Optional[LabctlError]) -> bool:
        """Record the first outcome. Later outcomes are dropped."""
        if self._finished.is_set():
            return False
        self._finished.set()
        self._results.put_nowait((code, error))
        return True

    def _evaluate(
        self, params: dict[str, list[str]]
    ) -> tuple[Optional[str], Optional[LabctlError], int, str]:
        """Classify a callback query into ``(code, error, http_status, page)``."""
        state = params.get("state", [""])[0]
        if not secrets.compare_digest(
            state.encode("utf-8"), self._expected_state.encode("utf-8")
        ):
            return (
                None,
                StateMismatchError("state mismatch: possible CSRF attack"),
                400,
                "<h1>State mismatch</h1>",
            )

        provider_error = params.get("error", [""])[0]
        if provider_error:
            description = params.get("error_description", [""])[0]
            page = (
                "<h1>Authorization Failed</h1>"
                f"<p>{html.escape(description)}</p>"
                "<p>You can close this window.</p>"
            )
            return None, AuthorizationDeniedError(provider_error, description), 200, page

        code = params.get("code", [""])[0]
        if not code:
            return (
                None,
                CallbackError("no authorization code received"),
                400,
                "<h1>No code received</h1>",
            )
        return code, None, 200, _SUCCESS_PAGE

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        listener = self

        class CallbackHandler(BaseHTTPRequestHandler):
            # Per-connection socket timeout so a stalled client cannot pin the server.
            timeout = 5

            def do_GET(self) -> None:
                parsed = urlparse(self.path)
                if parsed.path != listener._path:
                    self._respond(404, "<h1>Not found</h1>")
                    return
                if listener._finished.is_set():
                    self._respond(409, "<h1>This login has already been completed.</h1>")
                    return

                code, error, status, page = listener._evaluate(parse_qs(parsed.query))
                # Answer the browser before waking the login thread, which
                # starts shutting the server down as soon as it has a result.
                try:
                    self._respond(status, page)
                finally:
                    listener._deliver(code, error)

            def _respond(self, status: int, page: str) -> None:
                body = f"<html><body>{page}</body></html>".encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("callback server: " + format, *args)

        return CallbackHandler
